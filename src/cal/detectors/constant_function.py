"""constant-function-state: view/pure functions that change (or for pure, read) state"""

from __future__ import annotations

from typing import List, Tuple

from cal.call_graph import touched_slots
from cal.context import AnalysisContext
from cal.detectors.base import AbstractDetector
from cal.detectors.access_control import DESTRUCT_BUILTINS
from models.findings import Confidence, Finding, Impact, VulnerabilityType
from models.ir import CallKind, ExternalCallSite, Function, InternalCall, Mutability, StorageRead, StorageWrite

# call kinds that may modify state on the callee side
_STATE_CHANGING_CALLS = (CallKind.CALL, CallKind.DELEGATECALL, CallKind.SEND, CallKind.TRANSFER)


class ConstantFunctionStateDetector(AbstractDetector):
    ARGUMENT = "constant-function-state"
    HELP = "Function declared view/pure modifies state"
    IMPACT = Impact.MEDIUM
    CONFIDENCE = Confidence.MEDIUM
    VULNERABILITY_TYPE = VulnerabilityType.CONSTANT_FUNCTION_STATE

    def analyze(self, context: AnalysisContext) -> List[Finding]:
        findings: List[Finding] = []
        for fn in context.analyzable_functions():
            context.check_cancelled()
            if not fn.mutability.is_constant:
                continue
            offenders = self._offenders(context, fn)
            if not offenders:
                continue
            reasons = list(dict.fromkeys(reason for _, reason in offenders))
            findings.append(self.finding(
                fn,
                f"{fn.qualified_name} is declared {fn.mutability.value} but {', '.join(reasons)}",
                [instruction_id for instruction_id, _ in offenders],
            ))
        return findings

    def _offenders(self, context: AnalysisContext, fn: Function) -> List[Tuple[int, str]]:
        offenders: List[Tuple[int, str]] = []
        for instruction in fn.instructions:
            if isinstance(instruction, StorageWrite):
                slots = ", ".join(sorted(touched_slots(fn, instruction))) or "storage"
                offenders.append((instruction.id, f"writes {slots}"))
            elif isinstance(instruction, ExternalCallSite) and instruction.kind in _STATE_CHANGING_CALLS:
                offenders.append((instruction.id, f"makes a state-changing {instruction.kind.value}"))
            elif isinstance(instruction, InternalCall):
                if instruction.builtin:
                    if instruction.callee in DESTRUCT_BUILTINS:
                        offenders.append((instruction.id, f"calls {instruction.callee}"))
                    continue
                written = context.call_graph.slots_written(instruction.callee)
                if written:
                    offenders.append((instruction.id, f"calls {instruction.callee}() which writes {', '.join(sorted(written))}"))
                elif fn.mutability == Mutability.PURE and context.call_graph.slots_read(instruction.callee):
                    offenders.append((instruction.id, f"calls {instruction.callee}() which reads storage"))
            elif isinstance(instruction, StorageRead) and fn.mutability == Mutability.PURE:
                slots = ", ".join(sorted(touched_slots(fn, instruction))) or "storage"
                offenders.append((instruction.id, f"reads {slots}"))
        return offenders
