"""contract analysis layer"""
from .ir_lowering import IRLowering, lower_source_unit
from .cfg_builder import CFG, CFGBuilder, build_cfgs
from .call_graph import CallGraph
from .dataflow import WorklistSolver, DataflowResult
from .context import AnalysisContext
from .aggregator import FindingAggregator
from .pipeline import DetectorOutcome, DetectorPipeline, analyze_batch

__all__ = [
    "IRLowering",
    "lower_source_unit",
    "CFG",
    "CFGBuilder",
    "build_cfgs",
    "CallGraph",
    "WorklistSolver",
    "DataflowResult",
    "AnalysisContext",
    "FindingAggregator",
    "DetectorOutcome",
    "DetectorPipeline",
    "analyze_batch",
]
