"""detector interface"""

from __future__ import annotations

import abc
from typing import ClassVar, Iterable, List, Optional, Tuple, Type

from cal.context import AnalysisContext
from cal.dataflow import DataflowAnalysis
from models.findings import Confidence, Finding, Impact, VulnerabilityType
from models.ir import Function


class AbstractDetector(abc.ABC):
    """
    a detector reads the shared, immutable analysis context of one contract
    and returns new findings. it never mutates the context and never sees
    another detector's output. REQUIRES names the data-flow analyses the
    pipeline must solve before `analyze` runs.
    """

    ARGUMENT: ClassVar[str] = ""
    HELP: ClassVar[str] = ""
    IMPACT: ClassVar[Impact] = Impact.INFORMATIONAL
    CONFIDENCE: ClassVar[Confidence] = Confidence.LOW
    VULNERABILITY_TYPE: ClassVar[VulnerabilityType] = VulnerabilityType.UNKNOWN
    REQUIRES: ClassVar[Tuple[Type[DataflowAnalysis], ...]] = ()

    @abc.abstractmethod
    def analyze(self, context: AnalysisContext) -> List[Finding]:
        ...

    def finding(
        self,
        function: Function,
        message: str,
        evidence: Iterable[int],
        *,
        impact: Optional[Impact] = None,
        confidence: Optional[Confidence] = None,
        vulnerability_type: Optional[VulnerabilityType] = None,
        slot: Optional[str] = None,
        instruction_range: Optional[Tuple[int, int]] = None,
    ) -> Finding:
        evidence = tuple(evidence)
        if instruction_range is None:
            instruction_range = (min(evidence), max(evidence)) if evidence else (0, 0)
        return Finding(
            detector=self.ARGUMENT,
            vulnerability_type=vulnerability_type or self.VULNERABILITY_TYPE,
            impact=impact or self.IMPACT,
            confidence=confidence or self.CONFIDENCE,
            contract=function.contract_name,
            function=function.name,
            instruction_range=instruction_range,
            message=message,
            evidence=evidence,
            slot=slot,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.ARGUMENT})"
