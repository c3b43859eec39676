"""explicit per-contract analysis context handed to every detector"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Type

from cal.call_graph import CallGraph
from cal.cfg_builder import CFG
from cal.dataflow import AnalysisKey, DataflowAnalysis, DataflowResult
from config import AnalysisOptions
from models.findings import AnalysisCancelled
from models.ir import Contract, Function


class DataflowResults:
    """solved analyses of one contract, keyed by (analysis key, function name)"""

    def __init__(self, results: Dict[Tuple[AnalysisKey, str], DataflowResult]):
        self._results = MappingProxyType(dict(results))

    def get(self, analysis: Type[DataflowAnalysis], function_name: str) -> DataflowResult:
        try:
            return self._results[(analysis.key(), function_name)]
        except KeyError:
            raise KeyError(
                f"{analysis.NAME} was not solved for {function_name}; declare it in REQUIRES"
            ) from None

    def has(self, analysis: Type[DataflowAnalysis], function_name: str) -> bool:
        return (analysis.key(), function_name) in self._results

    def keys(self) -> List[AnalysisKey]:
        return sorted({key for key, _ in self._results})

    def unconverged(self) -> List[DataflowResult]:
        """solves that hit the iteration cap, in (function, analysis) order"""
        stopped = [result for result in self._results.values() if not result.converged]
        return sorted(stopped, key=lambda result: (result.function_name, result.key))

    def __iter__(self) -> Iterator[Tuple[AnalysisKey, str]]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)


@dataclass(frozen=True)
class AnalysisContext:
    contract: Contract
    cfgs: Mapping[str, CFG]
    call_graph: CallGraph
    dataflow: DataflowResults
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    cancel_event: Optional[threading.Event] = field(default=None, compare=False)

    def analyzable_functions(self) -> List[Function]:
        return [fn for fn in self.contract.functions if fn.analyzable and fn.name in self.cfgs]

    def cfg(self, function: Function) -> CFG:
        return self.cfgs[function.name]

    def result(self, analysis: Type[DataflowAnalysis], function: Function) -> DataflowResult:
        return self.dataflow.get(analysis, function.name)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self.cancelled:
            raise AnalysisCancelled(f"analysis of {self.contract.name} cancelled")
