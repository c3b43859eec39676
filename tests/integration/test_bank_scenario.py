"""integration tests: front-end json through lowering, analyses, detectors and aggregation"""

import json
import sys
import unittest
from pathlib import Path
import tempfile

# setup path
PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(PROJECT_ROOT / "tests"))

from ast_factory import (  # noqa: E402
    assign,
    bank,
    binary,
    contract,
    deposit,
    function,
    ident,
    lit,
    param,
    require,
    ret,
    sender,
    source_unit,
    state_var,
    withdraw_safe,
    withdraw_vulnerable,
)
from cal.pipeline import DetectorPipeline, analyze_batch  # noqa: E402
from config import AnalysisOptions  # noqa: E402
from models.findings import BatchResult, Confidence, Impact, VulnerabilityType  # noqa: E402
from utils.logging import RunLogger  # noqa: E402


def owned():
    return contract(
        "Owned",
        state_variables=[state_var("owner", "address")],
        functions=[
            function("setOwner", [assign("owner", ident("newOwner"))], parameters=[param("newOwner", "address")]),
            function("transferOwnership", [
                require(binary("==", sender(), ident("owner"))),
                assign("owner", ident("newOwner")),
            ], parameters=[param("newOwner", "address")]),
        ],
    )


def counter():
    return contract(
        "Counter",
        state_variables=[state_var("count")],
        functions=[
            function("increment", [assign("count", lit(1), operator="+=")]),
            function("get", [ret(ident("count"))], mutability="view", returns=[param("value")]),
        ],
    )


def front_end_json(*contracts):
    """the unit as a front-end would write it to disk"""
    return json.loads(json.dumps(source_unit(*contracts)))


class TestBankScenario(unittest.TestCase):
    def test_only_the_vulnerable_withdraw_is_reported(self):
        batch = analyze_batch(
            front_end_json(bank(withdraw_vulnerable(), withdraw_safe(), deposit())),
            options=AnalysisOptions(),
        )

        self.assertEqual(len(batch.findings), 1)
        finding = batch.findings[0]
        self.assertEqual(finding.vulnerability_type, VulnerabilityType.REENTRANCY)
        self.assertEqual((finding.contract, finding.function), ("Bank", "withdraw"))
        self.assertEqual(finding.impact, Impact.HIGH)
        self.assertEqual(finding.confidence, Confidence.MEDIUM)
        self.assertEqual(finding.slot, "balances")
        self.assertEqual(batch.findings_in("Bank", "withdrawSafe"), [])
        self.assertEqual(batch.diagnostics, [])
        self.assertEqual(batch.exit_code(), BatchResult.EXIT_FINDINGS)

    def test_contract_without_external_calls_is_clean(self):
        batch = analyze_batch(front_end_json(counter()), options=AnalysisOptions())
        self.assertEqual(batch.findings, [])
        self.assertTrue(batch.is_complete)
        self.assertEqual(batch.exit_code(), BatchResult.EXIT_CLEAN)

    def test_multi_contract_batch(self):
        unit = front_end_json(owned(), counter(), bank(withdraw_vulnerable(), withdraw_safe()))
        for parallel in (False, True):
            batch = analyze_batch(unit, options=AnalysisOptions(parallel_contracts=parallel, max_workers=3))
            self.assertEqual(
                [(f.detector, f.contract, f.function) for f in batch.findings],
                [("reentrancy", "Bank", "withdraw"), ("access-control", "Owned", "setOwner")],
            )
            self.assertEqual([c.contract_name for c in batch.contracts], ["Owned", "Counter", "Bank"])
            self.assertIn("'owner'", batch.findings[1].message)

    def test_batch_with_run_log(self):
        with tempfile.TemporaryDirectory() as log_dir:
            run_log = RunLogger(log_dir=log_dir, to_sqlite=True)
            pipeline = DetectorPipeline(options=AnalysisOptions(), run_logger=run_log)
            batch = pipeline.analyze_batch(front_end_json(bank(withdraw_vulnerable())))

            data = json.loads(batch.to_json())
            self.assertEqual(data["exit_code"], BatchResult.EXIT_FINDINGS)
            self.assertEqual(data["findings"][0]["function"], "withdraw")
            runs = run_log.query_detector_runs(contract_name="Bank")
            self.assertTrue(runs)
            self.assertEqual({r["run_id"] for r in runs}, {batch.run_id})


if __name__ == '__main__':
    unittest.main()
