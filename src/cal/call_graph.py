"""intra-contract call graph: functions, storage slots and external call sinks in one networkx graph"""

from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, List, Optional, Set

import networkx as nx

from models.ir import Contract, ExternalCallSite, Function, InternalCall, StorageRead, StorageWrite

logger = logging.getLogger(__name__)


def fn_node(name: str) -> str:
    return f"fn::{name}"


def state_node(slot: str) -> str:
    return f"state::{slot}"


def dep_node(label: str) -> str:
    return f"dep::{label}"


def builtin_node(name: str) -> str:
    return f"builtin::{name}"


class CallGraph:
    """
    node kinds: function (fn::), state_var (state::), dependency (dep::, an
    external call target) and builtin (builtin::). edges carry a `type` of
    calls_internal, calls_external, calls_builtin, reads or writes.

    internal callees that are not functions of the contract (inherited or
    library code the front-end did not supply) get a function node with
    resolved=False and are assumed to make no external calls and no writes.
    """

    def __init__(self, contract_name: str):
        self.contract_name = contract_name
        self.graph = nx.MultiDiGraph()
        self._functions: Dict[str, Function] = {}
        self._reachable: Dict[str, FrozenSet[str]] = {}

    @classmethod
    def build(cls, contract: Contract) -> "CallGraph":
        cg = cls(contract.name)
        for slot in contract.storage_slots:
            cg.graph.add_node(state_node(slot.name), type="state_var", label=slot.name)
        for fn in contract.functions:
            cg._functions[fn.name] = fn
            cg.graph.add_node(
                fn_node(fn.name),
                type="function",
                label=fn.name,
                resolved=True,
                entry_point=fn.is_entry_point,
                analyzable=fn.analyzable,
            )
        for fn in contract.functions:
            cg._add_function_edges(fn)
        cg._index_reachability()
        logger.debug(
            f"Call graph for {contract.name}",
            extra={
                "contract": contract.name,
                "nodes": cg.graph.number_of_nodes(),
                "edges": cg.graph.number_of_edges(),
            },
        )
        return cg

    def _add_function_edges(self, fn: Function) -> None:
        source = fn_node(fn.name)
        for instruction in fn.instructions:
            if isinstance(instruction, InternalCall):
                if instruction.builtin:
                    self.graph.add_node(builtin_node(instruction.callee), type="builtin", label=instruction.callee)
                    self.graph.add_edge(source, builtin_node(instruction.callee), key="calls_builtin", type="calls_builtin")
                    continue
                target = fn_node(instruction.callee)
                if target not in self.graph:
                    self.graph.add_node(target, type="function", label=instruction.callee, resolved=False)
                self.graph.add_edge(source, target, key="calls_internal", type="calls_internal")
            elif isinstance(instruction, ExternalCallSite):
                label = instruction.describe()
                self.graph.add_node(dep_node(label), type="dependency", label=label, kind=instruction.kind.value)
                self.graph.add_edge(
                    source,
                    dep_node(label),
                    key="calls_external",
                    type="calls_external",
                    can_reenter=instruction.can_reenter,
                )
            elif isinstance(instruction, StorageWrite):
                for slot in touched_slots(fn, instruction):
                    self.graph.add_edge(source, state_node(slot), key="writes", type="writes")
            elif isinstance(instruction, StorageRead):
                for slot in touched_slots(fn, instruction):
                    self.graph.add_edge(source, state_node(slot), key="reads", type="reads")

    # queries

    @property
    def function_names(self) -> List[str]:
        return list(self._functions)

    def is_resolved(self, name: str) -> bool:
        return name in self._functions

    def callees(self, name: str) -> List[str]:
        node = fn_node(name)
        if node not in self.graph:
            return []
        return sorted(
            self.graph.nodes[v]["label"]
            for _, v, d in self.graph.out_edges(node, data=True)
            if d["type"] == "calls_internal"
        )

    def callers(self, name: str) -> List[str]:
        node = fn_node(name)
        if node not in self.graph:
            return []
        return sorted(
            self.graph.nodes[u]["label"]
            for u, _, d in self.graph.in_edges(node, data=True)
            if d["type"] == "calls_internal"
        )

    def _index_reachability(self) -> None:
        internal = nx.subgraph_view(
            self.graph,
            filter_node=lambda n: self.graph.nodes[n].get("type") == "function",
        )
        for node in internal.nodes:
            name = internal.nodes[node]["label"]
            self._reachable[name] = frozenset(
                {name} | {internal.nodes[n]["label"] for n in nx.descendants(internal, node)}
            )

    def reachable_functions(self, name: str) -> FrozenSet[str]:
        """`name` plus every function it reaches through internal calls"""
        return self._reachable.get(name, frozenset({name}))

    def _edges_of_type(self, name: str, edge_type: str, transitive: bool) -> Set[Any]:
        names = self.reachable_functions(name) if transitive else {name}
        found: Set[Any] = set()
        for fn in names:
            node = fn_node(fn)
            if node not in self.graph:
                continue
            for _, v, d in self.graph.out_edges(node, data=True):
                if d["type"] == edge_type:
                    found.add(v)
        return found

    def reaches_external_call(self, name: str, reentrant_only: bool = True) -> bool:
        names = self.reachable_functions(name)
        for fn in names:
            node = fn_node(fn)
            if node not in self.graph:
                continue
            for _, _, d in self.graph.out_edges(node, data=True):
                if d["type"] == "calls_external" and (d.get("can_reenter") or not reentrant_only):
                    return True
        return False

    def reaches_builtin(self, name: str, builtin: str) -> bool:
        return builtin_node(builtin) in self._edges_of_type(name, "calls_builtin", transitive=True)

    def slots_written(self, name: str, transitive: bool = True) -> FrozenSet[str]:
        nodes = self._edges_of_type(name, "writes", transitive)
        return frozenset(self.graph.nodes[n]["label"] for n in nodes)

    def slots_read(self, name: str, transitive: bool = True) -> FrozenSet[str]:
        nodes = self._edges_of_type(name, "reads", transitive)
        return frozenset(self.graph.nodes[n]["label"] for n in nodes)

    def touches_slot(self, name: str, slot: str) -> bool:
        return slot in self.slots_written(name) or slot in self.slots_read(name)

    def entry_points(self) -> List[str]:
        return [fn.name for fn in self._functions.values() if fn.is_entry_point]

    def externally_reachable(self) -> FrozenSet[str]:
        reachable: Set[str] = set()
        for name in self.entry_points():
            reachable |= self.reachable_functions(name)
        return frozenset(n for n in reachable if n in self._functions)

    def function(self, name: str) -> Optional[Function]:
        return self._functions.get(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contract": self.contract_name,
            "nodes": [{**self.graph.nodes[n], "id": n} for n in sorted(self.graph.nodes)],
            "edges": [
                {"source": u, "target": v, **data}
                for u, v, data in sorted(self.graph.edges(data=True), key=lambda e: (e[0], e[1]))
            ],
        }


def touched_slots(fn: Function, instruction) -> Set[str]:
    """storage slots a StorageRead/StorageWrite refers to, resolving storage pointers"""
    if instruction.slot is not None:
        return {instruction.slot.name}
    if instruction.base is not None:
        # storage pointer: slots the pointer was derived from
        return set(fn.dependencies(instruction.base).slots)
    return set()
