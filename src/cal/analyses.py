"""data-flow analyses shared by the detectors"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Set, Tuple

from cal.call_graph import touched_slots
from cal.cfg_builder import CFGBuilder
from cal.dataflow import (
    AnalysisInputs,
    ChainLattice,
    DataflowAnalysis,
    Direction,
    Lattice,
    MapLattice,
    MustSetLattice,
    PowersetLattice,
    ProductLattice,
    WorklistSolver,
)
from models.ir import ExternalCallSite, Instruction, InternalCall, Phi, StorageWrite


class ReachingDefinitions(DataflowAnalysis):
    """
    forward may-analysis over sets of defining instruction ids.

    a definition of local `x` (any ssa generation) kills every other
    definition of `x`; Phi instructions neither kill nor generate so the
    definitions that flow into a join stay visible after it. finite: the
    universe is the function's defining instructions. monotone: gen/kill.
    """

    NAME = "reaching_definitions"
    DIRECTION = Direction.FORWARD

    def make_lattice(self) -> Lattice:
        function = self.inputs.function
        self.defs_by_name: Dict[str, FrozenSet[int]] = {}
        self.names_defined: Dict[int, Tuple[str, ...]] = {}
        grouped: Dict[str, Set[int]] = {}
        for instruction in function.instructions:
            if isinstance(instruction, Phi):
                continue
            names = tuple(v.name for v in instruction.defs() if not v.is_temporary)
            if names:
                self.names_defined[instruction.id] = names
                for name in names:
                    grouped.setdefault(name, set()).add(instruction.id)
        self.defs_by_name = {name: frozenset(ids) for name, ids in grouped.items()}
        return PowersetLattice()

    def transfer(self, instruction: Instruction, state: FrozenSet[int]) -> FrozenSet[int]:
        names = self.names_defined.get(instruction.id)
        if not names:
            return state
        for name in names:
            state = state - self.defs_by_name[name]
        return state | {instruction.id}


def reaching_definitions_of(result, function, instruction_id: int, name: str) -> FrozenSet[int]:
    """ids of the non-phi instructions defining `name` that reach `instruction_id`"""
    defining = {
        i.id for i in function.instructions
        if not isinstance(i, Phi) and any(v.name == name for v in i.defs())
    }
    return frozenset(result.before(instruction_id) & defining)


def written_slots(inputs, instruction: Instruction) -> FrozenSet[str]:
    """slots an instruction may write, including through internal callees"""
    if isinstance(instruction, StorageWrite):
        return frozenset(touched_slots(inputs.function, instruction))
    if isinstance(instruction, InternalCall) and not instruction.builtin:
        return inputs.call_graph.slots_written(instruction.callee)
    return frozenset()


class DefiniteStorageWrites(DataflowAnalysis):
    """
    forward must-analysis: slots written on every path reaching a point.

    lattice is sets of slot names under reverse inclusion (bottom = all
    slots, join = intersection); finite because slots are. transfer only
    adds slots: those a StorageWrite names, and those a resolved internal
    callee writes on every path that returns normally, so it is monotone.
    callee summaries are solved on demand; a call back into a function
    already being summarized contributes nothing.
    """

    NAME = "definite_storage_writes"
    DIRECTION = Direction.FORWARD

    def __init__(self, inputs: AnalysisInputs, summarizing: FrozenSet[str] = frozenset()):
        self._summarizing = summarizing | {inputs.function.name}
        self._summaries: Dict[str, FrozenSet[str]] = {}
        super().__init__(inputs)

    def make_lattice(self) -> Lattice:
        return MustSetLattice(slot.name for slot in self.inputs.contract.storage_slots)

    def initial(self) -> FrozenSet[str]:
        return frozenset()

    def transfer(self, instruction: Instruction, state: FrozenSet[str]) -> FrozenSet[str]:
        if isinstance(instruction, StorageWrite):
            return state | touched_slots(self.inputs.function, instruction)
        if isinstance(instruction, InternalCall) and not instruction.builtin:
            return state | self.callee_writes(instruction.callee)
        return state

    def callee_writes(self, name: str) -> FrozenSet[str]:
        """slots `name` writes on every path that returns normally"""
        if name not in self._summaries:
            self._summaries[name] = self._summarize(name)
        return self._summaries[name]

    def _summarize(self, name: str) -> FrozenSet[str]:
        callee = self.inputs.contract.function(name)
        if callee is None or not callee.analyzable or name in self._summarizing:
            return frozenset()
        cfg = CFGBuilder().build(callee)
        inputs = replace(self.inputs, function=callee, cfg=cfg, dependencies={})
        result = WorklistSolver(cfg, DefiniteStorageWrites(inputs, self._summarizing)).solve()
        exits = [b.id for b in cfg.normal_exit_blocks() if cfg.is_reachable(b.id)]
        if not exits:
            return frozenset()
        return frozenset.intersection(*(result.block_out[b] for b in exits))


class SlotStatus(Enum):
    CLEAN = "clean"
    WRITTEN_AFTER_EXTERNAL_CALL = "written_after_external_call"


class CallWriteOrdering(DataflowAnalysis):
    """
    forward analysis of storage writes that follow a reentrant call point.

    state = (live call points, slot -> SlotStatus, (call, write, slot) pairs).
    a call point is an ExternalCallSite that forwards gas and is not a
    staticcall, or an internal call whose callee transitively reaches one.
    a write of slot S after live call C is recorded unless S was definitely
    written before C (DefiniteStorageWrites at C), the checks-effects-
    interactions shape. every component only grows and is bounded by the
    function's instructions and slots, so the solve terminates.
    """

    NAME = "call_write_ordering"
    DIRECTION = Direction.FORWARD
    REQUIRES = (DefiniteStorageWrites,)

    def make_lattice(self) -> Lattice:
        self.slot_status = MapLattice(
            ChainLattice(SlotStatus.CLEAN, SlotStatus.WRITTEN_AFTER_EXTERNAL_CALL)
        )
        self._definite = self.dependency(DefiniteStorageWrites)
        return ProductLattice(PowersetLattice(), self.slot_status, PowersetLattice())

    def is_call_point(self, instruction: Instruction) -> bool:
        if isinstance(instruction, ExternalCallSite):
            return instruction.can_reenter
        if isinstance(instruction, InternalCall) and not instruction.builtin:
            return self.inputs.call_graph.reaches_external_call(instruction.callee)
        return False

    def written_before(self, call_id: int) -> FrozenSet[str]:
        return self._definite.before(call_id)

    def transfer(self, instruction: Instruction, state: Tuple[Any, Any, Any]) -> Tuple[Any, Any, Any]:
        live, status, pairs = state
        slots = written_slots(self.inputs, instruction)
        if slots and live:
            new_pairs = set(pairs)
            for slot in sorted(slots):
                for call_id in sorted(live):
                    if slot in self.written_before(call_id):
                        continue
                    status = self.slot_status.set(status, slot, SlotStatus.WRITTEN_AFTER_EXTERNAL_CALL)
                    new_pairs.add((call_id, instruction.id, slot))
            pairs = frozenset(new_pairs)
        if self.is_call_point(instruction):
            live = live | {instruction.id}
        return (live, status, pairs)

    def status_of(self, state, slot: str) -> SlotStatus:
        return self.slot_status.get(state[1], slot)


ALL_ANALYSES = (ReachingDefinitions, DefiniteStorageWrites, CallWriteOrdering)
