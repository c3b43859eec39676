"""tests for the worklist solver, the lattices and the shared analyses"""

import sys
import threading
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT / "tests"))

from ast_factory import (  # noqa: E402
    assign,
    bank,
    binary,
    call,
    declare,
    expr,
    function,
    ident,
    if_,
    index,
    lit,
    lower_one,
    param,
    sender,
    solved_context,
    state_var,
    withdraw_safe,
    withdraw_vulnerable,
)
from cal.analyses import (  # noqa: E402
    CallWriteOrdering,
    DefiniteStorageWrites,
    ReachingDefinitions,
    SlotStatus,
    reaching_definitions_of,
)
from cal.call_graph import CallGraph  # noqa: E402
from cal.cfg_builder import CFGBuilder  # noqa: E402
from cal.dataflow import (  # noqa: E402
    AnalysisInputs,
    ChainLattice,
    DataflowAnalysis,
    Direction,
    MapLattice,
    MustSetLattice,
    PowersetLattice,
    ProductLattice,
    WorklistSolver,
)
from models.findings import AnalysisCancelled  # noqa: E402


def _inputs(ir_contract, name):
    fn = ir_contract.function(name)
    return AnalysisInputs(
        contract=ir_contract,
        function=fn,
        cfg=CFGBuilder().build(fn),
        call_graph=CallGraph.build(ir_contract),
    )


class LiveNames(DataflowAnalysis):
    """backward liveness over local names"""

    NAME = "live_names"
    DIRECTION = Direction.BACKWARD

    def make_lattice(self):
        return PowersetLattice()

    def transfer(self, instruction, state):
        defined = {v.name for v in instruction.defs()}
        used = {v.name for v in instruction.used_variables()}
        return (state - defined) | used


class TestLattices:
    def test_powerset(self):
        lat = PowersetLattice()
        assert lat.bottom() == frozenset()
        assert lat.join(frozenset({1}), frozenset({2})) == frozenset({1, 2})
        assert lat.leq(frozenset({1}), frozenset({1, 2}))
        assert not lat.leq(frozenset({3}), frozenset({1, 2}))

    def test_must_set_is_reverse_inclusion(self):
        lat = MustSetLattice({"a", "b"})
        assert lat.bottom() == frozenset({"a", "b"})
        assert lat.join(frozenset({"a"}), frozenset({"a", "b"})) == frozenset({"a"})
        assert lat.leq(frozenset({"a", "b"}), frozenset({"a"}))
        assert not lat.leq(frozenset(), frozenset({"a"}))

    def test_chain(self):
        lat = ChainLattice("lo", "mid", "hi")
        assert lat.bottom() == "lo"
        assert lat.join("mid", "lo") == "mid"
        assert lat.leq("lo", "hi")
        assert lat.eq("mid", "mid")
        with pytest.raises(ValueError):
            ChainLattice()

    def test_map_omits_bottom_values(self):
        lat = MapLattice(ChainLattice(0, 1))
        m = lat.set(lat.bottom(), "x", 1)
        assert lat.get(m, "x") == 1
        assert lat.get(m, "y") == 0
        assert lat.set(m, "x", 0) == lat.bottom()
        assert lat.join(m, lat.set(lat.bottom(), "y", 1)) == frozenset({("x", 1), ("y", 1)})
        assert lat.leq(lat.bottom(), m)
        assert not lat.leq(m, lat.bottom())

    def test_product(self):
        lat = ProductLattice(PowersetLattice(), ChainLattice(False, True))
        assert lat.bottom() == (frozenset(), False)
        joined = lat.join((frozenset({1}), False), (frozenset({2}), True))
        assert joined == (frozenset({1, 2}), True)
        assert lat.eq(joined, (frozenset({2, 1}), True))

    def test_join_all_of_nothing_is_bottom(self):
        assert PowersetLattice().join_all([]) == frozenset()


class TestWorklistSolver:
    def test_reaching_definitions_before_write(self):
        c = lower_one(bank(withdraw_vulnerable()))
        result = WorklistSolver(_inputs(c, "withdraw").cfg, ReachingDefinitions(_inputs(c, "withdraw"))).solve()
        assert result.converged
        # amount (1) and ok (3) reach the final write; temporaries are not definitions
        assert result.before(8) == frozenset({1, 3})

    def test_resolve_from_fixed_point_changes_nothing(self):
        c = lower_one(bank(withdraw_vulnerable()))
        inputs = _inputs(c, "withdraw")
        solver = WorklistSolver(inputs.cfg, ReachingDefinitions(inputs))
        first = solver.solve()
        again = solver.solve(seed=first)
        assert again.changes == 0
        assert dict(again.state_in) == dict(first.state_in)

    def test_iteration_cap_reports_non_convergence(self):
        c = lower_one(bank(withdraw_vulnerable()))
        inputs = _inputs(c, "withdraw")
        result = WorklistSolver(inputs.cfg, ReachingDefinitions(inputs), max_iterations=1).solve()
        assert not result.converged
        assert result.iterations == 1

    def test_cancel_event_stops_solve(self):
        c = lower_one(bank(withdraw_vulnerable()))
        inputs = _inputs(c, "withdraw")
        event = threading.Event()
        event.set()
        with pytest.raises(AnalysisCancelled):
            WorklistSolver(inputs.cfg, ReachingDefinitions(inputs), cancel_event=event).solve()

    def test_backward_analysis(self):
        c = lower_one(bank(withdraw_vulnerable()))
        inputs = _inputs(c, "withdraw")
        result = WorklistSolver(inputs.cfg, LiveNames(inputs)).solve()
        # state_out of a backward analysis is the state before the instruction runs
        assert "amount" in result.after(2)
        assert "amount" not in result.after(1)

    def test_missing_dependency_is_reported(self):
        c = lower_one(bank(withdraw_vulnerable()))
        with pytest.raises(KeyError):
            CallWriteOrdering(_inputs(c, "withdraw"))


def test_reaching_definitions_through_branches():
    c = lower_one(bank(function("f", [
        declare("y", value=lit(0)),
        if_(binary(">", ident("y"), lit(1)), [assign("y", lit(1))]),
        assign("balances", ident("y")),
    ])))
    context = solved_context(c, ReachingDefinitions)
    fn = c.function("f")
    write = fn.storage_writes()[0]
    reaching = reaching_definitions_of(context.result(ReachingDefinitions, fn), fn, write.id, "y")
    assert len(reaching) == 2


def test_definite_writes_before_call():
    c = lower_one(bank(withdraw_vulnerable(), withdraw_safe()))
    context = solved_context(c, DefiniteStorageWrites)
    unsafe = c.function("withdraw")
    safe = c.function("withdrawSafe")
    assert context.result(DefiniteStorageWrites, unsafe).before(unsafe.external_calls()[0].id) == frozenset()
    assert context.result(DefiniteStorageWrites, safe).before(safe.external_calls()[0].id) == frozenset({"balances"})


def test_definite_writes_include_internal_callee_writes():
    always = function("_always", [assign(index("balances", sender()), lit(0))], visibility="internal")
    sometimes = function("_sometimes", [
        if_(binary(">", ident("x"), lit(1)), [assign("total", ident("x"))]),
    ], visibility="internal", parameters=[param("x")])
    f = function("f", [expr(call("_always")), expr(call("_sometimes", lit(2))), assign("total", lit(0))])
    c = lower_one(bank(always, sometimes, f, extra_state=[state_var("total")]))
    context = solved_context(c, DefiniteStorageWrites)
    fn = c.function("f")
    last_write = fn.storage_writes()[-1].id
    assert context.result(DefiniteStorageWrites, fn).before(last_write) == frozenset({"balances"})


def test_call_write_ordering_pairs():
    c = lower_one(bank(withdraw_vulnerable(), withdraw_safe()))
    context = solved_context(c, CallWriteOrdering)
    unsafe = c.function("withdraw")
    call_id = unsafe.external_calls()[0].id
    write_id = unsafe.storage_writes()[0].id
    state = context.result(CallWriteOrdering, unsafe).after(write_id)
    assert state[2] == frozenset({(call_id, write_id, "balances")})
    assert state[1] == frozenset({("balances", SlotStatus.WRITTEN_AFTER_EXTERNAL_CALL)})

    safe = c.function("withdrawSafe")
    last = safe.instructions[-1].id
    assert context.result(CallWriteOrdering, safe).after(last)[2] == frozenset()


def test_prepare_solves_required_analyses_first():
    c = lower_one(bank(withdraw_vulnerable()))
    context = solved_context(c, CallWriteOrdering)
    assert context.dataflow.has(DefiniteStorageWrites, "withdraw")
    assert context.dataflow.has(CallWriteOrdering, "withdraw")
    assert not context.dataflow.has(ReachingDefinitions, "withdraw")
    with pytest.raises(KeyError):
        context.result(ReachingDefinitions, c.function("withdraw"))
