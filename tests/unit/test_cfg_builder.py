"""tests for cfg construction"""

import sys
import unittest
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT / "tests"))

from ast_factory import (  # noqa: E402
    bank,
    binary,
    function,
    ident,
    if_,
    lit,
    lower_one,
    param,
    ret,
    withdraw_vulnerable,
    declare,
    assign,
    while_,
)
from cal.cfg_builder import CFGBuilder, EdgeKind, build_cfgs  # noqa: E402
from models.findings import MalformedInput  # noqa: E402
from models.ir import Function, Jump, Label, Mutability, Visibility  # noqa: E402


def _withdraw():
    return lower_one(bank(withdraw_vulnerable())).function("withdraw")


class TestWithdrawCFG(unittest.TestCase):
    def setUp(self):
        self.fn = _withdraw()
        self.cfg = CFGBuilder().build(self.fn)

    def test_block_partition(self):
        ids = [b.instruction_ids for b in self.cfg.blocks]
        self.assertEqual(ids, [(0, 1, 2, 3, 4), (5, 6), (7, 8), ()])
        self.assertEqual(self.cfg.entry, 0)
        self.assertEqual(self.cfg.exit, 3)
        self.assertTrue(self.cfg.blocks[3].is_exit)

    def test_edges(self):
        self.assertEqual(
            self.cfg.block(0).successors,
            ((1, EdgeKind.FALSE_BRANCH), (2, EdgeKind.TRUE_BRANCH)),
        )
        self.assertEqual(self.cfg.block(1).successors, ((3, EdgeKind.EXCEPTIONAL_RETURN),))
        self.assertEqual(self.cfg.block(2).successors, ((3, EdgeKind.UNCONDITIONAL),))
        self.assertEqual(
            self.cfg.block(3).predecessors,
            ((1, EdgeKind.EXCEPTIONAL_RETURN), (2, EdgeKind.UNCONDITIONAL)),
        )

    def test_implicit_return_and_normal_exits(self):
        self.assertTrue(self.cfg.implicit_return)
        self.assertEqual([b.id for b in self.cfg.normal_exit_blocks()], [2])

    def test_dominance(self):
        self.assertTrue(self.cfg.dominates(2, 8))
        self.assertTrue(self.cfg.dominates(0, 4))
        self.assertFalse(self.cfg.dominates(8, 2))
        self.assertFalse(self.cfg.dominates(6, 8))
        self.assertEqual(self.cfg.immediate_dominator(2), 0)
        self.assertIsNone(self.cfg.immediate_dominator(0))

    def test_block_of(self):
        self.assertEqual(self.cfg.block_of(6).id, 1)
        self.assertEqual(self.cfg.block_of(8).id, 2)

    def test_path_instructions_skip_labels(self):
        self.assertEqual(self.cfg.path_instructions(2, 8), (2, 3, 4, 8))

    def test_networkx_export(self):
        graph = self.cfg.to_networkx()
        self.assertEqual(graph.number_of_nodes(), 4)
        self.assertEqual(graph.number_of_edges(), 4)

    def test_to_dict(self):
        data = self.cfg.to_dict()
        self.assertEqual(data["function"], "withdraw")
        self.assertEqual(data["blocks"][0]["successors"], [[1, "false"], [2, "true"]])


def test_build_is_deterministic():
    fn = _withdraw()
    first = CFGBuilder().build(fn)
    second = CFGBuilder().build(_withdraw())
    assert first == second
    assert first.to_dict() == second.to_dict()


def test_empty_function_has_entry_and_exit():
    fn = lower_one(bank(function("noop"))).function("noop")
    cfg = CFGBuilder().build(fn)
    assert len(cfg.blocks) == 2
    assert cfg.block(0).instructions == ()
    assert cfg.block(0).successors == ((1, EdgeKind.UNCONDITIONAL),)
    assert cfg.implicit_return


def test_loop_has_back_edge():
    fn = lower_one(bank(function("count", [
        declare("i", value=lit(0)),
        while_(binary("<", ident("i"), lit(10)), [assign("i", binary("+", ident("i"), lit(1)))]),
    ]))).function("count")
    cfg = CFGBuilder().build(fn)
    kinds = [kind for block in cfg.blocks for _, kind in block.successors]
    assert EdgeKind.LOOP_BACK in kinds
    header = next(b for b in cfg.blocks if any(k == EdgeKind.LOOP_BACK for _, k in b.predecessors))
    assert isinstance(header.instructions[0], Label)
    assert cfg.dominates_block(header.id, cfg.block_of(fn.instructions[-2].id).id)


def test_explicit_returns_reach_exit():
    fn = lower_one(bank(function("f", [
        if_(binary(">", ident("a"), lit(1)), [ret(lit(1))]),
        ret(lit(0)),
    ], parameters=[param("a")], returns=[param("r")]))).function("f")
    cfg = CFGBuilder().build(fn)
    assert not cfg.implicit_return
    assert len(cfg.normal_exit_blocks()) == 2
    assert all(kind == EdgeKind.UNCONDITIONAL for _, kind in cfg.block(cfg.exit).predecessors)


def test_jump_to_undefined_label_is_malformed():
    fn = Function(
        name="broken",
        contract_name="C",
        visibility=Visibility.PUBLIC,
        mutability=Mutability.NONPAYABLE,
        instructions=(Jump(id=0, label=5),),
    )
    with pytest.raises(MalformedInput):
        CFGBuilder().build(fn)


def test_duplicate_label_is_malformed():
    fn = Function(
        name="broken",
        contract_name="C",
        visibility=Visibility.PUBLIC,
        mutability=Mutability.NONPAYABLE,
        instructions=(Label(id=0, label=1), Jump(id=1, label=1), Label(id=2, label=1)),
    )
    with pytest.raises(MalformedInput):
        CFGBuilder().build(fn)


def test_build_cfgs_by_name():
    c = lower_one(bank(withdraw_vulnerable(), function("noop")))
    cfgs = build_cfgs(c.functions)
    assert sorted(cfgs) == ["noop", "withdraw"]
