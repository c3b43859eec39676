"""tests for the json + sqlite run log"""

import json
import logging
import sys
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(ROOT / "src"))

from models.findings import Diagnostic, DiagnosticKind  # noqa: E402
from utils.correlation import analysis_context  # noqa: E402
from utils.logging import LogCategory, RunLogger  # noqa: E402


def raw_files(log_dir, category):
    return sorted((Path(log_dir) / "raw" / category.value).glob("*.json"))


def test_creates_category_directories(tmp_path):
    RunLogger(log_dir=tmp_path, to_sqlite=False)
    for category in LogCategory:
        assert (tmp_path / "raw" / category.value).is_dir()


def test_detector_run_round_trip(tmp_path):
    run_log = RunLogger(log_dir=tmp_path, to_sqlite=True)
    with analysis_context("feedbeef"):
        run_log.log_detector_run("Bank", "reentrancy", status="ok", duration_seconds=0.01, findings_count=1)
        run_log.log_detector_run("Bank", "boom", status="failed", error="RuntimeError: boom")
    run_log.log_detector_run("Vault", "reentrancy", status="ok")

    runs = run_log.query_detector_runs(contract_name="Bank")
    assert [(r["detector"], r["status"]) for r in runs] == [("reentrancy", "ok"), ("boom", "failed")]
    assert runs[0]["run_id"] == "feedbeef"
    assert runs[0]["findings_count"] == 1
    assert runs[1]["error"] == "RuntimeError: boom"
    assert len(run_log.query_detector_runs()) == 3

    files = raw_files(tmp_path, LogCategory.DETECTOR_RUN)
    assert len(files) == 3
    assert any("_feedbeef_Bank_reentrancy_" in f.name for f in files)
    assert any("_norun_Vault_reentrancy_" in f.name for f in files)


def test_diagnostics_by_kind(tmp_path):
    run_log = RunLogger(log_dir=tmp_path, to_sqlite=True)
    run_log.log_diagnostic(Diagnostic(DiagnosticKind.ANALYSIS_TIMEOUT, "too slow", contract="Slow"))
    run_log.log_diagnostic(Diagnostic(DiagnosticKind.UNSUPPORTED_CONSTRUCT, "assembly", contract="Bank", function="asm"))

    timeouts = run_log.query_diagnostics(kind="analysis_timeout")
    assert [(d["contract_name"], d["message"]) for d in timeouts] == [("Slow", "too slow")]
    assert len(run_log.query_diagnostics()) == 2

    data = json.loads(raw_files(tmp_path, LogCategory.DIAGNOSTIC)[0].read_text())
    assert data["category"] == "diagnostics"
    assert data["data"]["kind"] in {"analysis_timeout", "unsupported_construct"}


def test_dataflow_solve_is_written_as_json(tmp_path):
    run_log = RunLogger(log_dir=tmp_path, to_sqlite=False)
    result = SimpleNamespace(
        key=("reaching_definitions", "forward"),
        function_name="withdraw",
        iterations=6,
        changes=4,
        converged=True,
        elapsed_seconds=0.001,
    )
    run_log.log_dataflow_solve("Bank", result)

    (path,) = raw_files(tmp_path, LogCategory.DATAFLOW)
    data = json.loads(path.read_text())
    assert data["event_type"] == "solve"
    assert data["contract_name"] == "Bank"
    assert data["data"]["analysis"] == "reaching_definitions"
    assert data["data"]["converged"] is True


def test_log_error_surfaces_through_logger(tmp_path, caplog):
    run_log = RunLogger(log_dir=tmp_path, to_sqlite=True)
    with caplog.at_level(logging.ERROR, logger="utils.logging.core"):
        run_log.log_error("pipeline", "Bank", "detector", "boom", context={"detector": "boom"})
    assert "pipeline failed during detector: boom" in caplog.text
    (path,) = raw_files(tmp_path, LogCategory.ERROR)
    assert json.loads(path.read_text())["data"]["context"] == {"detector": "boom"}


def test_json_only_mode_creates_no_database(tmp_path):
    run_log = RunLogger(log_dir=tmp_path, to_sqlite=False)
    run_log.log_detector_run("Bank", "reentrancy", status="ok")
    assert not (tmp_path / "runs.db").exists()
    assert len(raw_files(tmp_path, LogCategory.DETECTOR_RUN)) == 1
