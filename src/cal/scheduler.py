"""solve scheduling for data-flow analyses with dependencies"""

import logging
from typing import Dict, Iterable, List, Type

import networkx as nx

from cal.dataflow import AnalysisKey, DataflowAnalysis

logger = logging.getLogger(__name__)


class TaskScheduler:
    """schedules tasks based on dependencies (edge a -> b: b needs a)"""

    def __init__(self, dependency_graph: nx.DiGraph):
        self.graph = dependency_graph

    def get_execution_batches(self) -> List[List[str]]:
        """returns batches for parallel execution"""
        graph = self.graph.copy()
        batches = []

        while graph.number_of_nodes() > 0:
            current_batch = sorted(n for n in graph.nodes if graph.in_degree(n) == 0)

            if not current_batch:
                node_to_break = min(sorted(graph.nodes), key=lambda n: graph.in_degree(n))
                current_batch = [node_to_break]
                logger.warning(
                    f"[scheduler] cycle detected, breaking at {node_to_break}",
                    extra={"node": node_to_break},
                )

            batches.append(current_batch)
            graph.remove_nodes_from(current_batch)

        return batches


def analysis_closure(requested: Iterable[Type[DataflowAnalysis]]) -> Dict[AnalysisKey, Type[DataflowAnalysis]]:
    """requested analyses plus everything they transitively require, keyed by analysis key"""
    found: Dict[AnalysisKey, Type[DataflowAnalysis]] = {}
    stack = list(requested)
    while stack:
        analysis = stack.pop()
        if analysis.key() in found:
            continue
        found[analysis.key()] = analysis
        stack.extend(analysis.REQUIRES)
    return found


def schedule_analyses(requested: Iterable[Type[DataflowAnalysis]]) -> List[List[Type[DataflowAnalysis]]]:
    """dependency batches: every analysis comes after the analyses it requires"""
    classes = analysis_closure(requested)
    graph = nx.DiGraph()
    names = {cls.NAME: cls for cls in classes.values()}
    graph.add_nodes_from(names)
    for cls in classes.values():
        for required in cls.REQUIRES:
            graph.add_edge(required.NAME, cls.NAME)
    batches = TaskScheduler(graph).get_execution_batches()
    return [[names[name] for name in batch] for batch in batches]
