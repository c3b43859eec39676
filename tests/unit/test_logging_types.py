"""tests for logging.types module"""

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(ROOT / "src"))

from utils.logging.types import LogCategory, LogEntry  # noqa: E402


class TestLogCategory:
    def test_all_categories_exist(self):
        expected = ["DETECTOR_RUN", "DATAFLOW", "DIAGNOSTIC", "BATCH", "SYSTEM_METRIC", "ERROR"]
        actual = [cat.name for cat in LogCategory]
        assert set(expected) == set(actual)

    def test_category_values(self):
        assert LogCategory.DETECTOR_RUN.value == "detector_runs"
        assert LogCategory.DATAFLOW.value == "dataflow"
        assert LogCategory.DIAGNOSTIC.value == "diagnostics"
        assert LogCategory.BATCH.value == "batches"
        assert LogCategory.SYSTEM_METRIC.value == "metrics"
        assert LogCategory.ERROR.value == "errors"

    def test_category_from_value(self):
        assert LogCategory("detector_runs") == LogCategory.DETECTOR_RUN
        assert LogCategory("batches") == LogCategory.BATCH
        assert LogCategory("errors") == LogCategory.ERROR

    def test_category_invalid_value_raises_error(self):
        with pytest.raises(ValueError):
            LogCategory("attacks")

    def test_category_iteration(self):
        categories = list(LogCategory)
        assert len(categories) == 6
        assert all(isinstance(cat, LogCategory) for cat in categories)


class TestLogEntry:
    def test_log_entry_creation_minimal(self):
        entry = LogEntry(
            timestamp="2025-10-21T10:00:00",
            category="detector_runs",
            event_type="detector_run",
            run_id=None,
            contract_name=None,
        )

        assert entry.run_id is None
        assert entry.contract_name is None
        assert entry.data == {}
        assert entry.metadata == {}

    def test_default_dicts_are_not_shared(self):
        a = LogEntry("t", "dataflow", "solve", None, None)
        b = LogEntry("t", "dataflow", "solve", None, None)
        a.data["iterations"] = 3
        assert b.data == {}

    def test_to_dict(self):
        entry = LogEntry(
            timestamp="2025-10-21T10:30:00",
            category="diagnostics",
            event_type="analysis_timeout",
            run_id="a3f9b2c4",
            contract_name="Slow",
            data={"message": "analysis of 'Slow' exceeded 500 ms"},
            metadata={"attempt": 1},
        )

        assert entry.to_dict() == {
            "timestamp": "2025-10-21T10:30:00",
            "category": "diagnostics",
            "event_type": "analysis_timeout",
            "run_id": "a3f9b2c4",
            "contract_name": "Slow",
            "data": {"message": "analysis of 'Slow' exceeded 500 ms"},
            "metadata": {"attempt": 1},
        }
