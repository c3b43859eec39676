"""generic worklist data-flow engine

Callers provide a lattice (bottom, join, leq), a per-instruction transfer
function and a direction through a `DataflowAnalysis` subclass. The solver
only guarantees termination when the lattice has finite height and the
transfer function is monotone; each analysis documents why it satisfies
both. `max_iterations` is a backstop, reported through `converged` rather
than raised.
"""

from __future__ import annotations

import abc
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, Dict, FrozenSet, Generic, Iterable, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from models.findings import AnalysisCancelled

if TYPE_CHECKING:
    from cal.call_graph import CallGraph
    from cal.cfg_builder import CFG
    from models.ir import Contract, Function, Instruction

logger = logging.getLogger(__name__)

L = TypeVar("L")


class Direction(Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


class Lattice(abc.ABC, Generic[L]):
    """join semilattice; values must be immutable"""

    @abc.abstractmethod
    def bottom(self) -> L:
        ...

    @abc.abstractmethod
    def join(self, a: L, b: L) -> L:
        ...

    @abc.abstractmethod
    def leq(self, a: L, b: L) -> bool:
        ...

    def eq(self, a: L, b: L) -> bool:
        return self.leq(a, b) and self.leq(b, a)

    def join_all(self, values: Iterable[L]) -> L:
        result = self.bottom()
        for value in values:
            result = self.join(result, value)
        return result


class PowersetLattice(Lattice[FrozenSet]):
    """(2^U, subset, empty, union)"""

    def bottom(self) -> FrozenSet:
        return frozenset()

    def join(self, a: FrozenSet, b: FrozenSet) -> FrozenSet:
        return a | b

    def leq(self, a: FrozenSet, b: FrozenSet) -> bool:
        return a <= b

    def eq(self, a: FrozenSet, b: FrozenSet) -> bool:
        return a == b


class MustSetLattice(Lattice[FrozenSet]):
    """sets ordered by reverse inclusion: bottom is the universe, join is intersection"""

    def __init__(self, universe: Iterable[Any]):
        self.universe = frozenset(universe)

    def bottom(self) -> FrozenSet:
        return self.universe

    def join(self, a: FrozenSet, b: FrozenSet) -> FrozenSet:
        return a & b

    def leq(self, a: FrozenSet, b: FrozenSet) -> bool:
        return a >= b

    def eq(self, a: FrozenSet, b: FrozenSet) -> bool:
        return a == b


class ChainLattice(Lattice[Any]):
    """totally ordered finite lattice, least element first"""

    def __init__(self, *elements: Any):
        if not elements:
            raise ValueError("ChainLattice needs at least one element")
        self.elements = elements
        self._rank = {e: i for i, e in enumerate(elements)}

    def bottom(self) -> Any:
        return self.elements[0]

    def join(self, a: Any, b: Any) -> Any:
        return a if self._rank[a] >= self._rank[b] else b

    def leq(self, a: Any, b: Any) -> bool:
        return self._rank[a] <= self._rank[b]


class MapLattice(Lattice[FrozenSet]):
    """
    pointwise lattice over keys; values are frozensets of (key, value) pairs
    with bottom-valued keys omitted, so equal maps compare equal
    """

    def __init__(self, value_lattice: Lattice):
        self.value_lattice = value_lattice

    def bottom(self) -> FrozenSet:
        return frozenset()

    def get(self, m: FrozenSet, key: Any) -> Any:
        for k, v in m:
            if k == key:
                return v
        return self.value_lattice.bottom()

    def set(self, m: FrozenSet, key: Any, value: Any) -> FrozenSet:
        rest = {(k, v) for k, v in m if k != key}
        if not self.value_lattice.eq(value, self.value_lattice.bottom()):
            rest.add((key, value))
        return frozenset(rest)

    def join(self, a: FrozenSet, b: FrozenSet) -> FrozenSet:
        merged: Dict[Any, Any] = dict(a)
        for k, v in b:
            merged[k] = self.value_lattice.join(merged[k], v) if k in merged else v
        return frozenset(merged.items())

    def leq(self, a: FrozenSet, b: FrozenSet) -> bool:
        right = dict(b)
        bottom = self.value_lattice.bottom()
        return all(self.value_lattice.leq(v, right.get(k, bottom)) for k, v in a)


class ProductLattice(Lattice[Tuple]):
    def __init__(self, *lattices: Lattice):
        self.lattices: Tuple[Lattice, ...] = lattices

    def bottom(self) -> Tuple:
        return tuple(lat.bottom() for lat in self.lattices)

    def join(self, a: Tuple, b: Tuple) -> Tuple:
        return tuple(lat.join(x, y) for lat, x, y in zip(self.lattices, a, b))

    def leq(self, a: Tuple, b: Tuple) -> bool:
        return all(lat.leq(x, y) for lat, x, y in zip(self.lattices, a, b))

    def eq(self, a: Tuple, b: Tuple) -> bool:
        return all(lat.eq(x, y) for lat, x, y in zip(self.lattices, a, b))


AnalysisKey = Tuple[str, str]


@dataclass(frozen=True)
class AnalysisInputs:
    """read-only inputs an analysis instance is built from"""
    contract: "Contract"
    function: "Function"
    cfg: "CFG"
    call_graph: "CallGraph"
    # results of the analyses this one REQUIRES, for the same function
    dependencies: Mapping[AnalysisKey, "DataflowResult"] = field(default_factory=dict)


class DataflowAnalysis(abc.ABC):
    NAME: ClassVar[str]
    DIRECTION: ClassVar[Direction] = Direction.FORWARD
    REQUIRES: ClassVar[Tuple[Type["DataflowAnalysis"], ...]] = ()

    def __init__(self, inputs: AnalysisInputs):
        self.inputs = inputs
        self.lattice: Lattice = self.make_lattice()

    @classmethod
    def key(cls) -> AnalysisKey:
        return (cls.NAME, cls.DIRECTION.value)

    @abc.abstractmethod
    def make_lattice(self) -> Lattice:
        ...

    def initial(self) -> Any:
        """boundary state at the entry (forward) or exit (backward) block"""
        return self.lattice.bottom()

    @abc.abstractmethod
    def transfer(self, instruction: "Instruction", state: Any) -> Any:
        ...

    def dependency(self, analysis: Type["DataflowAnalysis"]) -> "DataflowResult":
        try:
            return self.inputs.dependencies[analysis.key()]
        except KeyError:
            raise KeyError(f"{self.NAME} requires {analysis.NAME}, which was not solved first") from None


@dataclass(frozen=True)
class DataflowResult:
    """
    fixed point of one analysis over one function. block states are in
    analysis order: for backward analyses `block_in` is the state at the
    block's end. `state_in`/`state_out` hold the state before and after each
    instruction's transfer.
    """
    key: AnalysisKey
    function_name: str
    block_in: Mapping[int, Any]
    block_out: Mapping[int, Any]
    state_in: Mapping[int, Any]
    state_out: Mapping[int, Any]
    iterations: int = 0
    changes: int = 0
    converged: bool = True
    elapsed_seconds: float = field(default=0.0, compare=False)

    def before(self, instruction_id: int) -> Any:
        return self.state_in[instruction_id]

    def after(self, instruction_id: int) -> Any:
        return self.state_out[instruction_id]


class WorklistSolver:
    def __init__(
        self,
        cfg: "CFG",
        analysis: DataflowAnalysis,
        max_iterations: int = 100_000,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.cfg = cfg
        self.analysis = analysis
        self.lattice = analysis.lattice
        self.max_iterations = max_iterations
        self.cancel_event = cancel_event

    def _flow(self, block_id: int) -> Tuple[Sequence[int], Sequence[int]]:
        """(inputs, outputs) of a block in analysis direction"""
        block = self.cfg.block(block_id)
        preds = [b for b, _ in block.predecessors]
        succs = [b for b, _ in block.successors]
        if self.analysis.DIRECTION == Direction.FORWARD:
            return preds, succs
        return succs, preds

    def _instructions(self, block_id: int):
        instructions = self.cfg.block(block_id).instructions
        if self.analysis.DIRECTION == Direction.BACKWARD:
            return tuple(reversed(instructions))
        return instructions

    def _run_block(self, block_id: int, state: Any) -> Any:
        for instruction in self._instructions(block_id):
            state = self.analysis.transfer(instruction, state)
        return state

    def solve(self, seed: Optional[DataflowResult] = None) -> DataflowResult:
        started = time.monotonic()
        lattice = self.lattice
        block_ids = [b.id for b in self.cfg.blocks]
        if self.analysis.DIRECTION == Direction.BACKWARD:
            block_ids.reverse()
        boundary = self.cfg.entry if self.analysis.DIRECTION == Direction.FORWARD else self.cfg.exit
        initial = self.analysis.initial()

        if seed is not None:
            block_in = dict(seed.block_in)
            block_out = dict(seed.block_out)
        else:
            block_in = {b: lattice.bottom() for b in block_ids}
            block_out = {b: lattice.bottom() for b in block_ids}

        worklist = deque(block_ids)
        queued = set(block_ids)
        iterations = 0
        changes = 0
        converged = True

        while worklist:
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise AnalysisCancelled(f"{self.analysis.NAME} solve of {self.cfg.function_name} cancelled")
            if iterations >= self.max_iterations:
                converged = False
                break
            block_id = worklist.popleft()
            queued.discard(block_id)
            iterations += 1

            inputs, outputs = self._flow(block_id)
            state = lattice.join_all(block_out[b] for b in inputs)
            if block_id == boundary:
                state = initial if not inputs else lattice.join(state, initial)
            block_in[block_id] = state

            out = self._run_block(block_id, state)
            if lattice.eq(out, block_out[block_id]):
                continue
            block_out[block_id] = out
            changes += 1
            for succ in outputs:
                if succ not in queued:
                    worklist.append(succ)
                    queued.add(succ)

        state_in: Dict[int, Any] = {}
        state_out: Dict[int, Any] = {}
        for block_id in block_ids:
            state = block_in[block_id]
            for instruction in self._instructions(block_id):
                state_in[instruction.id] = state
                state = self.analysis.transfer(instruction, state)
                state_out[instruction.id] = state

        elapsed = time.monotonic() - started
        if not converged:
            logger.warning(
                f"{self.analysis.NAME} did not converge on {self.cfg.function_name}",
                extra={"analysis": self.analysis.NAME, "function": self.cfg.function_name, "iterations": iterations},
            )
        return DataflowResult(
            key=self.analysis.key(),
            function_name=self.cfg.function_name,
            block_in=MappingProxyType(block_in),
            block_out=MappingProxyType(block_out),
            state_in=MappingProxyType(state_in),
            state_out=MappingProxyType(state_out),
            iterations=iterations,
            changes=changes,
            converged=converged,
            elapsed_seconds=elapsed,
        )
