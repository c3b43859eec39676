import sys
import unittest
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(ROOT / "src"))

from utils.correlation import (  # noqa: E402
    analysis_context,
    clear_run_id,
    generate_run_id,
    get_run_id,
    wrap_in_context,
)


class TestCorrelation(unittest.TestCase):
    def tearDown(self):
        clear_run_id()

    def test_generate_run_id(self):
        run_id = generate_run_id()
        self.assertEqual(len(run_id), 8)
        self.assertNotEqual(run_id, generate_run_id())

    def test_context_sets_and_clears(self):
        self.assertIsNone(get_run_id())
        with analysis_context("a3f9b2c4") as run_id:
            self.assertEqual(run_id, "a3f9b2c4")
            self.assertEqual(get_run_id(), "a3f9b2c4")
        self.assertIsNone(get_run_id())

    def test_nested_context_restores_outer(self):
        with analysis_context("outer"):
            with analysis_context("inner"):
                self.assertEqual(get_run_id(), "inner")
            self.assertEqual(get_run_id(), "outer")

    def test_wrapped_function_sees_run_id_in_worker(self):
        with analysis_context("batch001"):
            task = wrap_in_context(get_run_id)
            with ThreadPoolExecutor(max_workers=2) as executor:
                results = [f.result() for f in [executor.submit(task) for _ in range(4)]]
        self.assertEqual(results, ["batch001"] * 4)


if __name__ == '__main__':
    unittest.main()
