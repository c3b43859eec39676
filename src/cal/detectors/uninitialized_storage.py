"""uninitialized-storage: storage pointers used before they point anywhere"""

from __future__ import annotations

from typing import Dict, List, Tuple

from cal.analyses import ReachingDefinitions, reaching_definitions_of
from cal.context import AnalysisContext
from cal.detectors.base import AbstractDetector
from models.findings import Confidence, Finding, Impact, VulnerabilityType
from models.ir import Assignment, Function, StorageRead, StorageWrite


class UninitializedStorageDetector(AbstractDetector):
    """
    a storage-located local declared without an initializer aliases slot 0.
    any read or write through it while the default definition can still
    reach is reported; High confidence when nothing else reaches.
    """

    ARGUMENT = "uninitialized-storage"
    HELP = "Storage pointer used while still uninitialized"
    IMPACT = Impact.HIGH
    CONFIDENCE = Confidence.HIGH
    VULNERABILITY_TYPE = VulnerabilityType.UNINITIALIZED_STORAGE
    REQUIRES = (ReachingDefinitions,)

    def analyze(self, context: AnalysisContext) -> List[Finding]:
        findings: List[Finding] = []
        for fn in context.analyzable_functions():
            context.check_cancelled()
            pointers = {
                local.name for local in fn.locals
                if local.is_storage_pointer and not local.is_parameter
            }
            if not pointers:
                continue
            result = context.result(ReachingDefinitions, fn)
            first_use: Dict[str, Tuple[int, Tuple[int, ...], bool]] = {}
            for instruction in fn.instructions:
                if not isinstance(instruction, (StorageRead, StorageWrite)) or instruction.base is None:
                    continue
                name = instruction.base.name
                if name not in pointers or name in first_use:
                    continue
                reaching = reaching_definitions_of(result, fn, instruction.id, name)
                defaults = tuple(sorted(d for d in reaching if _is_default(fn, d)))
                if defaults:
                    first_use[name] = (instruction.id, defaults, len(defaults) == len(reaching))
            for name in sorted(first_use):
                use_id, defaults, only_default = first_use[name]
                findings.append(self.finding(
                    fn,
                    f"{fn.qualified_name} uses storage pointer '{name}' at instruction {use_id} "
                    f"before it is assigned; it aliases the first storage slots",
                    defaults + (use_id,),
                    confidence=Confidence.HIGH if only_default else Confidence.MEDIUM,
                ))
        return findings


def _is_default(fn: Function, instruction_id: int) -> bool:
    instruction = fn.instruction(instruction_id)
    return isinstance(instruction, Assignment) and instruction.is_default
