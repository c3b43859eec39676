from enum import Enum
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Tuple
import json


class VulnerabilityType(Enum):
    """vulnerability classification"""
    REENTRANCY = "reentrancy"
    CROSS_FUNCTION_REENTRANCY = "cross_function_reentrancy"
    UNINITIALIZED_STORAGE = "uninitialized_storage"
    ACCESS_CONTROL = "access_control"
    TX_ORIGIN = "tx_origin_authorization"
    CONSTANT_FUNCTION_STATE = "constant_function_state"
    UNCHECKED_CALL = "unchecked_call"

    UNKNOWN = "unknown"


class Impact(Enum):
    """impact (severity) classification, ordered from least to most severe"""
    INFORMATIONAL = "informational"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _IMPACT_ORDER.index(self)

    @classmethod
    def parse(cls, value: "str | Impact") -> "Impact":
        if isinstance(value, Impact):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown impact '{value}'") from None


class Confidence(Enum):
    """detector confidence classification"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_ORDER.index(self)

    def lowered(self) -> "Confidence":
        """one level lower, saturating at LOW"""
        return _CONFIDENCE_ORDER[max(0, self.rank - 1)]

    @classmethod
    def parse(cls, value: "str | Confidence") -> "Confidence":
        if isinstance(value, Confidence):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown confidence '{value}'") from None


_IMPACT_ORDER = list(Impact)
_CONFIDENCE_ORDER = list(Confidence)


class DiagnosticKind(Enum):
    """recoverable and fatal analysis problems reported next to findings"""
    UNSUPPORTED_CONSTRUCT = "unsupported_construct"
    DETECTOR_FAILED = "detector_failed"
    ANALYSIS_TIMEOUT = "analysis_timeout"
    MALFORMED_INPUT = "malformed_input"
    DATAFLOW_NOT_CONVERGED = "dataflow_not_converged"


class BastionError(Exception):
    """base class for analysis errors"""


class MalformedInput(BastionError):
    """the input ast is structurally invalid; aborts the whole batch"""


class UnsupportedConstruct(BastionError):
    """a source construct the lowering does not model"""

    def __init__(self, construct: str, location: Optional[str] = None):
        self.construct = construct
        self.location = location
        where = f" at {location}" if location else ""
        super().__init__(f"unsupported construct '{construct}'{where}")


class DetectorFailed(BastionError):
    """a detector raised while analyzing a contract"""

    def __init__(self, detector_id: str, reason: str):
        self.detector_id = detector_id
        self.reason = reason
        super().__init__(f"detector '{detector_id}' failed: {reason}")


class AnalysisTimeout(BastionError):
    """a contract ran past its per-contract time limit"""

    def __init__(self, contract: str, timeout_ms: int):
        self.contract = contract
        self.timeout_ms = timeout_ms
        super().__init__(f"analysis of '{contract}' exceeded {timeout_ms} ms")


class AnalysisCancelled(BastionError):
    """cooperative cancellation signal raised inside a cancelled contract run"""


@dataclass(frozen=True)
class Diagnostic:
    """non-finding outcome of a run (incomplete analysis, failed detector, ...)"""
    kind: DiagnosticKind
    message: str
    contract: Optional[str] = None
    function: Optional[str] = None
    detector: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[str, str, str, str, str]:
        return (
            self.contract or "",
            self.function or "",
            self.kind.value,
            self.detector or "",
            self.message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "contract": self.contract,
            "function": self.function,
            "detector": self.detector,
        }

    def __repr__(self) -> str:
        where = ".".join(p for p in (self.contract, self.function) if p)
        return f"Diagnostic({self.kind.value}, {where or '-'})"


@dataclass(frozen=True)
class Finding:
    """single reported issue; immutable once emitted"""
    detector: str
    vulnerability_type: VulnerabilityType
    impact: Impact
    confidence: Confidence
    contract: str
    function: str
    instruction_range: Tuple[int, int]
    message: str
    evidence: Tuple[int, ...] = ()
    slot: Optional[str] = None

    def __post_init__(self) -> None:
        first, last = self.instruction_range
        if first > last:
            raise ValueError(f"instruction_range {self.instruction_range} is inverted")
        if not isinstance(self.evidence, tuple):
            object.__setattr__(self, "evidence", tuple(self.evidence))

    @property
    def dedup_key(self) -> Tuple[str, str, str, Tuple[int, int]]:
        return (self.detector, self.contract, self.function, self.instruction_range)

    @property
    def sort_key(self) -> Tuple:
        return (
            -self.impact.rank,
            -self.confidence.rank,
            self.contract,
            self.function,
            self.instruction_range,
            self.detector,
            self.message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detector": self.detector,
            "vulnerability_type": self.vulnerability_type.value,
            "impact": self.impact.value,
            "confidence": self.confidence.value,
            "contract": self.contract,
            "function": self.function,
            "instruction_range": list(self.instruction_range),
            "message": self.message,
            "evidence": list(self.evidence),
            "slot": self.slot,
        }

    def __repr__(self) -> str:
        return f"Finding([{self.impact.value.upper()}] {self.detector} {self.contract}.{self.function})"


@dataclass
class ContractResult:
    """outcome of analyzing one contract"""
    contract_name: str
    findings: List[Finding] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    detectors_run: List[str] = field(default_factory=list)
    detectors_failed: List[str] = field(default_factory=list)
    analysis_time_seconds: float = 0.0
    timed_out: bool = False

    @property
    def all_detectors_failed(self) -> bool:
        return bool(self.detectors_run) and len(self.detectors_failed) == len(self.detectors_run)

    def __repr__(self) -> str:
        return f"ContractResult({self.contract_name}, {len(self.findings)} findings, timed_out={self.timed_out})"


@dataclass
class BatchResult:
    """combined result of one analysis batch, handed to an external reporter"""
    findings: List[Finding] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    contracts: List[ContractResult] = field(default_factory=list)
    error: Optional[Diagnostic] = None
    run_id: Optional[str] = None
    total_time: float = 0.0

    EXIT_CLEAN = 0
    EXIT_FINDINGS = 1
    EXIT_INTERNAL_ERROR = 2

    @property
    def is_complete(self) -> bool:
        """true when every function and detector could be analyzed"""
        return self.error is None and not self.diagnostics

    def exit_code(self) -> int:
        if self.error is not None:
            return self.EXIT_INTERNAL_ERROR
        analyzed = [c for c in self.contracts if not c.timed_out and c.detectors_run]
        if analyzed and all(c.all_detectors_failed for c in analyzed):
            return self.EXIT_INTERNAL_ERROR
        if self.findings:
            return self.EXIT_FINDINGS
        return self.EXIT_CLEAN

    def diagnostics_of(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind == kind]

    def findings_in(self, contract: str, function: Optional[str] = None) -> List[Finding]:
        return [
            f for f in self.findings
            if f.contract == contract and (function is None or f.function == function)
        ]

    def _count_by_impact(self) -> Dict[str, int]:
        counts = {impact.value: 0 for impact in Impact}
        for finding in self.findings:
            counts[finding.impact.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "findings": [f.to_dict() for f in self.findings],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "error": self.error.to_dict() if self.error else None,
            "stats": {
                "total_findings": len(self.findings),
                "by_impact": self._count_by_impact(),
                "contracts": len(self.contracts),
                "timed_out": [c.contract_name for c in self.contracts if c.timed_out],
                "complete": self.is_complete,
            },
            "exit_code": self.exit_code(),
            "duration_seconds": self.total_time,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def __repr__(self) -> str:
        return f"BatchResult({len(self.findings)} findings, {len(self.diagnostics)} diagnostics, exit={self.exit_code()})"
