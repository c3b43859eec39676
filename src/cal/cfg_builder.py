"""control-flow graph construction over lowered functions"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx

from models.findings import MalformedInput
from models.ir import Condition, Function, Instruction, Jump, Label, Phi, Return, Revert

logger = logging.getLogger(__name__)


class EdgeKind(Enum):
    UNCONDITIONAL = "unconditional"
    TRUE_BRANCH = "true"
    FALSE_BRANCH = "false"
    LOOP_BACK = "loop_back"
    EXCEPTIONAL_RETURN = "exceptional_return"


Edge = Tuple[int, EdgeKind]


@dataclass(frozen=True)
class BasicBlock:
    id: int
    instructions: Tuple[Instruction, ...] = ()
    successors: Tuple[Edge, ...] = ()
    predecessors: Tuple[Edge, ...] = ()
    is_exit: bool = False

    @property
    def terminator(self) -> Optional[Instruction]:
        if self.instructions and self.instructions[-1].IS_TERMINATOR:
            return self.instructions[-1]
        return None

    @property
    def instruction_ids(self) -> Tuple[int, ...]:
        return tuple(i.id for i in self.instructions)

    def __repr__(self) -> str:
        ids = self.instruction_ids
        span = f"{ids[0]}..{ids[-1]}" if ids else "empty"
        return f"BasicBlock({self.id}, {span}, succ={[s for s, _ in self.successors]})"


@dataclass(frozen=True)
class CFG:
    """immutable per-function cfg with a synthetic exit block"""
    contract_name: str
    function_name: str
    blocks: Tuple[BasicBlock, ...]
    entry: int
    exit: int
    implicit_return: bool = False
    _block_of: Dict[int, int] = field(default_factory=dict, repr=False, compare=False)
    _idom: Dict[int, int] = field(default_factory=dict, repr=False, compare=False)

    def block(self, block_id: int) -> BasicBlock:
        return self.blocks[block_id]

    def block_of(self, instruction_id: int) -> BasicBlock:
        return self.blocks[self._block_of[instruction_id]]

    def is_reachable(self, block_id: int) -> bool:
        return block_id in self._idom

    def immediate_dominator(self, block_id: int) -> Optional[int]:
        idom = self._idom.get(block_id)
        return None if idom is None or block_id == self.entry else idom

    def dominates_block(self, a: int, b: int) -> bool:
        if a not in self._idom or b not in self._idom:
            return False
        current = b
        while True:
            if current == a:
                return True
            if current == self.entry:
                return False
            current = self._idom[current]

    def dominates(self, a: int, b: int) -> bool:
        """every path from entry to instruction `b` passes through instruction `a`"""
        block_a = self._block_of[a]
        block_b = self._block_of[b]
        if block_a == block_b:
            return a <= b and self.is_reachable(block_a)
        return self.dominates_block(block_a, block_b)

    def normal_exit_blocks(self) -> List[BasicBlock]:
        """blocks that leave the function without reverting"""
        return [
            self.blocks[b]
            for b, kind in self.blocks[self.exit].predecessors
            if kind != EdgeKind.EXCEPTIONAL_RETURN
        ]

    def path_instructions(self, start: int, end: int) -> Tuple[int, ...]:
        """instruction ids on a shortest path from `start` to `end`, both included"""
        block_start = self._block_of[start]
        block_end = self._block_of[end]
        if block_start == block_end and start <= end:
            ids = [i.id for i in self.blocks[block_start].instructions if start <= i.id <= end]
            return self._significant(ids)

        parents: Dict[int, Optional[int]] = {}
        queue = deque()
        for succ, _ in self.blocks[block_start].successors:
            if succ not in parents:
                parents[succ] = None
                queue.append(succ)
        while queue:
            current = queue.popleft()
            if current == block_end:
                break
            for succ, _ in self.blocks[current].successors:
                if succ not in parents:
                    parents[succ] = current
                    queue.append(succ)
        if block_end not in parents:
            return (start, end)

        chain: List[int] = []
        current: Optional[int] = block_end
        while current is not None:
            chain.append(current)
            current = parents[current]
        chain.reverse()

        ids = [i.id for i in self.blocks[block_start].instructions if i.id >= start]
        for block_id in chain[:-1]:
            ids.extend(self.blocks[block_id].instruction_ids)
        ids.extend(i.id for i in self.blocks[block_end].instructions if i.id <= end)
        return self._significant(ids)

    def _significant(self, ids: List[int]) -> Tuple[int, ...]:
        out = []
        for position, instruction_id in enumerate(ids):
            block = self.blocks[self._block_of[instruction_id]]
            instruction = next(i for i in block.instructions if i.id == instruction_id)
            if position in (0, len(ids) - 1) or not isinstance(instruction, (Label, Jump, Phi)):
                out.append(instruction_id)
        return tuple(dict.fromkeys(out))

    def to_networkx(self) -> nx.MultiDiGraph:
        graph = nx.MultiDiGraph(contract=self.contract_name, function=self.function_name)
        for block in self.blocks:
            graph.add_node(block.id, instructions=block.instruction_ids, is_exit=block.is_exit)
        for block in self.blocks:
            for succ, kind in block.successors:
                graph.add_edge(block.id, succ, kind=kind.value)
        return graph

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contract": self.contract_name,
            "function": self.function_name,
            "entry": self.entry,
            "exit": self.exit,
            "implicit_return": self.implicit_return,
            "blocks": [
                {
                    "id": b.id,
                    "instructions": list(b.instruction_ids),
                    "successors": [[s, k.value] for s, k in b.successors],
                }
                for b in self.blocks
            ],
        }


class CFGBuilder:
    """partitions a function's instructions into basic blocks"""

    def build(self, function: Function) -> CFG:
        instructions = function.instructions
        chunks = self._partition(instructions)
        exit_id = len(chunks)

        label_block: Dict[int, int] = {}
        for block_id, chunk in enumerate(chunks):
            first = chunk[0] if chunk else None
            if isinstance(first, Label):
                if first.label in label_block:
                    raise MalformedInput(f"{function.qualified_name}: label L{first.label} defined twice")
                label_block[first.label] = block_id

        def target(label: int) -> int:
            if label not in label_block:
                raise MalformedInput(f"{function.qualified_name}: jump to undefined label L{label}")
            return label_block[label]

        successors: List[List[Edge]] = [[] for _ in range(exit_id + 1)]
        implicit_return = False
        for block_id, chunk in enumerate(chunks):
            last = chunk[-1] if chunk else None
            edges: List[Edge] = []
            if isinstance(last, Jump):
                dest = target(last.label)
                edges.append((dest, EdgeKind.LOOP_BACK if dest <= block_id else EdgeKind.UNCONDITIONAL))
            elif isinstance(last, Condition):
                edges.append((target(last.true_label), EdgeKind.TRUE_BRANCH))
                edges.append((target(last.false_label), EdgeKind.FALSE_BRANCH))
            elif isinstance(last, Return):
                edges.append((exit_id, EdgeKind.UNCONDITIONAL))
            elif isinstance(last, Revert):
                edges.append((exit_id, EdgeKind.EXCEPTIONAL_RETURN))
            elif block_id + 1 < exit_id:
                edges.append((block_id + 1, EdgeKind.UNCONDITIONAL))
            else:
                # falls off the end of the function
                edges.append((exit_id, EdgeKind.UNCONDITIONAL))
                implicit_return = True
            successors[block_id] = sorted(set(edges), key=lambda e: (e[0], e[1].value))

        predecessors: List[List[Edge]] = [[] for _ in range(exit_id + 1)]
        for block_id, edges in enumerate(successors):
            for succ, kind in edges:
                predecessors[succ].append((block_id, kind))

        blocks = []
        block_of: Dict[int, int] = {}
        for block_id in range(exit_id + 1):
            chunk = tuple(chunks[block_id]) if block_id < exit_id else ()
            for instruction in chunk:
                block_of[instruction.id] = block_id
            blocks.append(BasicBlock(
                id=block_id,
                instructions=chunk,
                successors=tuple(successors[block_id]),
                predecessors=tuple(sorted(predecessors[block_id], key=lambda e: (e[0], e[1].value))),
                is_exit=block_id == exit_id,
            ))

        graph = nx.DiGraph()
        graph.add_nodes_from(range(exit_id + 1))
        for block_id, edges in enumerate(successors):
            graph.add_edges_from((block_id, succ) for succ, _ in edges)
        idom = dict(nx.immediate_dominators(graph, 0))
        idom[0] = 0

        cfg = CFG(
            contract_name=function.contract_name,
            function_name=function.name,
            blocks=tuple(blocks),
            entry=0,
            exit=exit_id,
            implicit_return=implicit_return,
            _block_of=block_of,
            _idom=idom,
        )
        logger.debug(
            f"Built CFG for {function.qualified_name}",
            extra={"function": function.qualified_name, "blocks": len(blocks), "implicit_return": implicit_return},
        )
        return cfg

    def _partition(self, instructions: Tuple[Instruction, ...]) -> List[List[Instruction]]:
        if not instructions:
            # entry block of an empty function
            return [[]]
        chunks: List[List[Instruction]] = []
        current: List[Instruction] = []
        for instruction in instructions:
            if isinstance(instruction, Label) and current:
                chunks.append(current)
                current = []
            current.append(instruction)
            if instruction.IS_TERMINATOR:
                chunks.append(current)
                current = []
        if current:
            chunks.append(current)
        return chunks


def build_cfgs(functions) -> Dict[str, CFG]:
    builder = CFGBuilder()
    return {fn.name: builder.build(fn) for fn in functions}
