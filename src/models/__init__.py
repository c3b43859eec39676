from .findings import (
    VulnerabilityType,
    Impact,
    Confidence,
    DiagnosticKind,
    BastionError,
    MalformedInput,
    UnsupportedConstruct,
    DetectorFailed,
    AnalysisTimeout,
    AnalysisCancelled,
    Diagnostic,
    Finding,
    ContractResult,
    BatchResult,
)
from .ast import SourceUnit, parse_source_unit

__all__ = [
    'VulnerabilityType',
    'Impact',
    'Confidence',
    'DiagnosticKind',
    'BastionError',
    'MalformedInput',
    'UnsupportedConstruct',
    'DetectorFailed',
    'AnalysisTimeout',
    'AnalysisCancelled',
    'Diagnostic',
    'Finding',
    'ContractResult',
    'BatchResult',
    'SourceUnit',
    'parse_source_unit',
]
