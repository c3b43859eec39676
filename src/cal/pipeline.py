"""
detector pipeline

Per contract: build CFGs and the call graph, solve every data-flow analysis
the selected detectors require (once per function, before any detector
runs), then run the detectors sequentially or on a thread pool. Each
detector run is wrapped in a DetectorOutcome so a failing detector turns
into a DETECTOR_FAILED diagnostic instead of an exception. Per batch:
validate and lower the input, analyze every contract (optionally in
parallel, optionally under a per-contract timeout) and aggregate.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cal.aggregator import FindingAggregator
from cal.call_graph import CallGraph
from cal.cfg_builder import CFGBuilder
from cal.context import AnalysisContext, DataflowResults
from cal.dataflow import AnalysisInputs, WorklistSolver
from cal.detectors.base import AbstractDetector
from cal.detectors.registry import DetectorRegistry, default_registry
from cal.ir_lowering import IRLowering
from cal.scheduler import schedule_analyses
from config import AnalysisOptions, config
from models.ast import parse_source_unit
from models.findings import (
    AnalysisCancelled,
    AnalysisTimeout,
    BatchResult,
    ContractResult,
    DetectorFailed,
    Diagnostic,
    DiagnosticKind,
    Finding,
    MalformedInput,
)
from models.ir import Contract
from utils.correlation import analysis_context, wrap_in_context
from utils.logging import RunLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectorOutcome:
    """result of one detector on one contract: findings or an error, never both"""
    detector: str
    findings: Tuple[Finding, ...] = ()
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @classmethod
    def ok(cls, detector: str, findings: Iterable[Finding], duration_seconds: float = 0.0) -> "DetectorOutcome":
        return cls(detector=detector, findings=tuple(findings), duration_seconds=duration_seconds)

    @classmethod
    def failed(cls, detector: str, error: str, duration_seconds: float = 0.0) -> "DetectorOutcome":
        return cls(detector=detector, error=error, duration_seconds=duration_seconds)

    @property
    def succeeded(self) -> bool:
        return self.error is None


class DetectorPipeline:
    def __init__(
        self,
        registry: Optional[DetectorRegistry] = None,
        options: Optional[AnalysisOptions] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        self.registry = registry if registry is not None else default_registry()
        self.options = options if options is not None else config.to_options()
        if run_logger is None and config.ENABLE_RUN_LOG:
            run_logger = RunLogger()
        self.run_logger = run_logger
        self.cfg_builder = CFGBuilder()
        self.aggregator = FindingAggregator(mode=self.options.dedup_mode)

    def selected_detectors(self) -> List[AbstractDetector]:
        return self.registry.select(self.options.enabled_detectors)

    # per contract

    def prepare(
        self,
        contract: Contract,
        detectors: Iterable[AbstractDetector],
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalysisContext:
        """build the shared, read-only analysis context of one contract"""
        functions = [fn for fn in contract.functions if fn.analyzable]
        cfgs = {fn.name: self.cfg_builder.build(fn) for fn in functions}
        call_graph = CallGraph.build(contract)

        requested = {}
        for detector in detectors:
            for analysis in detector.REQUIRES:
                requested[analysis.key()] = analysis

        results: Dict[Tuple[Any, str], Any] = {}
        for batch in schedule_analyses(requested.values()):
            for analysis in batch:
                for fn in functions:
                    if cancel_event is not None and cancel_event.is_set():
                        raise AnalysisCancelled(f"analysis of {contract.name} cancelled")
                    dependencies = {
                        required.key(): results[(required.key(), fn.name)] for required in analysis.REQUIRES
                    }
                    inputs = AnalysisInputs(
                        contract=contract,
                        function=fn,
                        cfg=cfgs[fn.name],
                        call_graph=call_graph,
                        dependencies=MappingProxyType(dependencies),
                    )
                    solver = WorklistSolver(
                        cfgs[fn.name],
                        analysis(inputs),
                        max_iterations=self.options.dataflow_max_iterations,
                        cancel_event=cancel_event,
                    )
                    result = solver.solve()
                    results[(analysis.key(), fn.name)] = result
                    if self.run_logger is not None:
                        self.run_logger.log_dataflow_solve(contract.name, result)

        logger.debug(
            f"Prepared {contract.name}",
            extra={
                "contract": contract.name,
                "functions": len(functions),
                "analyses": sorted(name for name, _ in requested),
                "solves": len(results),
            },
        )
        return AnalysisContext(
            contract=contract,
            cfgs=MappingProxyType(cfgs),
            call_graph=call_graph,
            dataflow=DataflowResults(results),
            options=self.options,
            cancel_event=cancel_event,
        )

    def run_detector(self, detector: AbstractDetector, context: AnalysisContext) -> DetectorOutcome:
        started = time.monotonic()
        try:
            findings = detector.analyze(context)
        except AnalysisCancelled:
            raise
        except Exception as exc:
            duration = time.monotonic() - started
            logger.error(
                f"Detector {detector.ARGUMENT} failed on {context.contract.name}: {exc}",
                exc_info=True,
                extra={"detector": detector.ARGUMENT, "contract": context.contract.name},
            )
            return DetectorOutcome.failed(detector.ARGUMENT, f"{type(exc).__name__}: {exc}", duration)
        return DetectorOutcome.ok(detector.ARGUMENT, findings, time.monotonic() - started)

    def _run_detectors(self, detectors: List[AbstractDetector], context: AnalysisContext) -> List[DetectorOutcome]:
        if not self.options.parallel_detectors or len(detectors) < 2:
            return [self.run_detector(detector, context) for detector in detectors]

        outcomes: Dict[str, DetectorOutcome] = {}
        workers = min(self.options.max_workers, len(detectors))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bastion-detector") as executor:
            futures = {
                executor.submit(wrap_in_context(self.run_detector), detector, context): detector
                for detector in detectors
            }
            for future in as_completed(futures):
                outcome = future.result()
                outcomes[outcome.detector] = outcome
        return [outcomes[detector.ARGUMENT] for detector in detectors]

    def analyze_contract(self, contract: Contract, cancel_event: Optional[threading.Event] = None) -> ContractResult:
        started = time.monotonic()
        result = ContractResult(contract_name=contract.name, diagnostics=list(contract.diagnostics))
        detectors = self.selected_detectors()
        if not detectors:
            return result

        context = self.prepare(contract, detectors, cancel_event)
        for solve in context.dataflow.unconverged():
            result.diagnostics.append(Diagnostic(
                kind=DiagnosticKind.DATAFLOW_NOT_CONVERGED,
                message=f"{solve.key[0]} stopped after {solve.iterations} iterations; results are partial",
                contract=contract.name,
                function=solve.function_name,
            ))
        for outcome in self._run_detectors(detectors, context):
            result.detectors_run.append(outcome.detector)
            if outcome.succeeded:
                result.findings.extend(outcome.findings)
            else:
                result.detectors_failed.append(outcome.detector)
                result.diagnostics.append(Diagnostic(
                    kind=DiagnosticKind.DETECTOR_FAILED,
                    message=str(DetectorFailed(outcome.detector, outcome.error)),
                    contract=contract.name,
                    detector=outcome.detector,
                ))
            if self.run_logger is not None:
                self.run_logger.log_detector_run(
                    contract.name,
                    outcome.detector,
                    status="ok" if outcome.succeeded else "failed",
                    duration_seconds=outcome.duration_seconds,
                    findings_count=len(outcome.findings),
                    error=outcome.error,
                )

        result.analysis_time_seconds = time.monotonic() - started
        logger.info(
            f"Analyzed {contract.name}",
            extra={
                "contract": contract.name,
                "findings": len(result.findings),
                "failed": result.detectors_failed,
                "duration_seconds": round(result.analysis_time_seconds, 4),
            },
        )
        return result

    def _analyze_with_timeout(self, contract: Contract) -> ContractResult:
        timeout = self.options.per_contract_timeout_seconds
        if timeout is None:
            return self.analyze_contract(contract)

        cancel_event = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bastion-contract")
        try:
            future = executor.submit(wrap_in_context(self.analyze_contract), contract, cancel_event)
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError:
                # the worker observes the event at its next poll and unwinds
                cancel_event.set()
                error = AnalysisTimeout(contract.name, self.options.per_contract_timeout_ms)
                logger.warning(
                    str(error),
                    extra={"contract": contract.name, "timeout_ms": self.options.per_contract_timeout_ms},
                )
                return ContractResult(
                    contract_name=contract.name,
                    diagnostics=[Diagnostic(
                        kind=DiagnosticKind.ANALYSIS_TIMEOUT,
                        message=str(error),
                        contract=contract.name,
                    )],
                    analysis_time_seconds=timeout,
                    timed_out=True,
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _analyze_contracts(self, contracts: List[Contract]) -> List[ContractResult]:
        if not self.options.parallel_contracts or len(contracts) < 2:
            return [self._analyze_with_timeout(contract) for contract in contracts]
        workers = min(self.options.max_workers, len(contracts))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bastion-batch") as executor:
            futures = [executor.submit(wrap_in_context(self._analyze_with_timeout), c) for c in contracts]
            return [future.result() for future in futures]

    # per batch

    def analyze_batch(self, source) -> BatchResult:
        """analyze a parsed source unit (SourceUnit, dict or list of contracts)"""
        started = time.monotonic()
        with analysis_context() as run_id:
            try:
                unit = parse_source_unit(source)
                contracts = IRLowering().lower_source_unit(unit)
                results = self._analyze_contracts(contracts)
            except MalformedInput as exc:
                logger.error(f"Malformed input: {exc}", extra={"run_id": run_id})
                batch = BatchResult(
                    error=Diagnostic(kind=DiagnosticKind.MALFORMED_INPUT, message=str(exc)),
                    run_id=run_id,
                    total_time=time.monotonic() - started,
                )
                self._log_batch(batch)
                return batch

            findings = self.aggregator.aggregate(
                (finding for result in results for finding in result.findings),
                self.options,
            )
            diagnostics = sorted(
                (diagnostic for result in results for diagnostic in result.diagnostics),
                key=lambda d: d.sort_key,
            )
            batch = BatchResult(
                findings=findings,
                diagnostics=diagnostics,
                contracts=results,
                run_id=run_id,
                total_time=time.monotonic() - started,
            )
            self._log_batch(batch)
            logger.info(
                f"Batch complete: {len(findings)} findings, {len(diagnostics)} diagnostics",
                extra={
                    "run_id": run_id,
                    "contracts": len(results),
                    "findings": len(findings),
                    "diagnostics": len(diagnostics),
                    "exit_code": batch.exit_code(),
                },
            )
            return batch

    def _log_batch(self, batch: BatchResult) -> None:
        if self.run_logger is None:
            return
        for diagnostic in batch.diagnostics:
            self.run_logger.log_diagnostic(diagnostic)
        if batch.error is not None:
            self.run_logger.log_error("pipeline", None, batch.error.kind.value, batch.error.message)
        self.run_logger.log_batch(batch)


def analyze_batch(
    source,
    options: Optional[AnalysisOptions] = None,
    registry: Optional[DetectorRegistry] = None,
    run_logger: Optional[RunLogger] = None,
) -> BatchResult:
    return DetectorPipeline(registry=registry, options=options, run_logger=run_logger).analyze_batch(source)
