import sys
import unittest
from pathlib import Path

import networkx as nx

ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(ROOT / "src"))

from cal.analyses import CallWriteOrdering, DefiniteStorageWrites, ReachingDefinitions  # noqa: E402
from cal.scheduler import TaskScheduler, analysis_closure, schedule_analyses  # noqa: E402


class TestTaskScheduler(unittest.TestCase):
    def setUp(self):
        self.graph = nx.DiGraph()

    def test_simple_linear_dependency(self):
        # edge a -> b means b needs a, so a runs first
        self.graph.add_edge("A", "B")
        self.graph.add_edge("B", "C")

        scheduler = TaskScheduler(self.graph)
        batches = scheduler.get_execution_batches()

        self.assertEqual(len(batches), 3)
        self.assertEqual(batches[0], ["A"])
        self.assertEqual(batches[1], ["B"])
        self.assertEqual(batches[2], ["C"])

    def test_branching_dependency(self):
        self.graph.add_edge("A", "B")
        self.graph.add_edge("A", "C")

        scheduler = TaskScheduler(self.graph)
        batches = scheduler.get_execution_batches()

        self.assertEqual(len(batches), 2)
        self.assertEqual(batches[0], ["A"])
        self.assertEqual(batches[1], ["B", "C"])  # batches are sorted

    def test_independent_components(self):
        self.graph.add_edge("A", "B")
        self.graph.add_edge("C", "D")

        scheduler = TaskScheduler(self.graph)
        batches = scheduler.get_execution_batches()

        self.assertEqual(len(batches), 2)
        self.assertEqual(batches[0], ["A", "C"])
        self.assertEqual(batches[1], ["B", "D"])

    def test_cycle_handling(self):
        self.graph.add_edge("A", "B")
        self.graph.add_edge("B", "A")

        scheduler = TaskScheduler(self.graph)
        with self.assertLogs("cal.scheduler", level="WARNING"):
            batches = scheduler.get_execution_batches()
        self.assertEqual(len(batches), 2)

        flat = [item for sublist in batches for item in sublist]
        self.assertCountEqual(flat, ["A", "B"])

    def test_empty_graph(self):
        scheduler = TaskScheduler(self.graph)
        self.assertEqual(scheduler.get_execution_batches(), [])


class TestAnalysisScheduling(unittest.TestCase):
    def test_closure_pulls_in_requirements(self):
        closure = analysis_closure([CallWriteOrdering])
        self.assertEqual(
            set(closure.values()),
            {CallWriteOrdering, DefiniteStorageWrites},
        )

    def test_requirements_run_first(self):
        batches = schedule_analyses([CallWriteOrdering])
        self.assertEqual(batches, [[DefiniteStorageWrites], [CallWriteOrdering]])

    def test_independent_analyses_share_a_batch(self):
        batches = schedule_analyses([ReachingDefinitions, CallWriteOrdering])
        self.assertEqual(batches, [[DefiniteStorageWrites, ReachingDefinitions], [CallWriteOrdering]])

    def test_duplicates_are_scheduled_once(self):
        batches = schedule_analyses([ReachingDefinitions, ReachingDefinitions])
        self.assertEqual(batches, [[ReachingDefinitions]])


if __name__ == '__main__':
    unittest.main()
