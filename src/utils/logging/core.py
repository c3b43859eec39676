"""
Run Logger Core Implementation

This module contains the RunLogger class, which provides dual-layer
logging (raw JSON files + SQLite) for analysis batches.

The logger captures:
- Detector runs (contract, detector, status, duration, finding count)
- Diagnostics (unsupported constructs, failed detectors, timeouts)
- Data-flow solves (analysis, function, iterations, convergence)
- Batch summaries (contracts, findings, exit code)
"""

import itertools
import json
import logging
import sqlite3
import threading
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional, List, Union

from config import config
from utils.logging.types import LogCategory, LogEntry
from utils.correlation import get_run_id

logger = logging.getLogger(__name__)


class RunLogger:
    """
    Dual-layer run log

    Usage:
        run_log = RunLogger(log_dir="/tmp/bastion-logs")
        run_log.log_detector_run("Bank", "reentrancy", status="ok",
                                 duration_seconds=0.01, findings_count=1)
        run_log.query_detector_runs(contract_name="Bank")
    """

    def __init__(
        self,
        log_dir: Optional[Union[str, Path]] = None,
        db_path: Optional[Union[str, Path]] = None,
        to_sqlite: Optional[bool] = None,
    ):
        self.logs_dir = Path(log_dir) if log_dir else config.LOGS_DIR
        self.raw_dir = self.logs_dir / "raw"
        self.db_path = Path(db_path) if db_path else self.logs_dir / config.LOGS_DB_PATH.name
        self.to_sqlite = config.LOG_TO_SQLITE if to_sqlite is None else to_sqlite

        # detectors of one contract log from worker threads
        self._write_lock = threading.Lock()
        self._sequence = itertools.count(1)

        for category in LogCategory:
            (self.raw_dir / category.value).mkdir(parents=True, exist_ok=True)

        if self.to_sqlite:
            self._init_database()

    def _init_database(self):
        """Initialize SQLite database with tables"""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS detector_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    run_id TEXT,
                    contract_name TEXT NOT NULL,
                    detector TEXT NOT NULL,
                    status TEXT NOT NULL,
                    duration_seconds REAL,
                    findings_count INTEGER,
                    error TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS diagnostics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    run_id TEXT,
                    kind TEXT NOT NULL,
                    contract_name TEXT,
                    function_name TEXT,
                    detector TEXT,
                    message TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS dataflow_solves (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    run_id TEXT,
                    contract_name TEXT NOT NULL,
                    function_name TEXT NOT NULL,
                    analysis TEXT NOT NULL,
                    iterations INTEGER,
                    changes INTEGER,
                    converged INTEGER,
                    duration_seconds REAL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS batches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    run_id TEXT,
                    contracts INTEGER,
                    findings INTEGER,
                    diagnostics INTEGER,
                    exit_code INTEGER,
                    duration_seconds REAL,
                    metadata TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS errors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    run_id TEXT,
                    component TEXT NOT NULL,
                    contract_name TEXT,
                    error_type TEXT NOT NULL,
                    error_message TEXT NOT NULL,
                    context TEXT
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_detector_runs_contract ON detector_runs(contract_name)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_diagnostics_kind ON diagnostics(kind)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_dataflow_contract ON dataflow_solves(contract_name)")

            conn.commit()

    def _now(self) -> str:
        return datetime.now().isoformat()

    def _save_json(self, category: LogCategory, label: str, entry: LogEntry):
        """Save raw JSON log file tagged with the run id"""
        run_id = entry.run_id or "norun"
        filename = f"{datetime.now().strftime('%Y-%m-%d')}_{run_id}_{label}_{next(self._sequence):05d}.json"
        filepath = self.raw_dir / category.value / filename
        with open(filepath, 'w', encoding="utf-8") as f:
            json.dump(entry.to_dict(), f, indent=2, default=str)

    def _insert(self, sql: str, params: tuple):
        if not self.to_sqlite:
            return
        with self._write_lock:
            with sqlite3.connect(str(self.db_path)) as conn:
                conn.execute(sql, params)
                conn.commit()

    def _entry(self, category: LogCategory, event_type: str, contract_name: Optional[str], data: Dict[str, Any],
               metadata: Optional[Dict[str, Any]] = None) -> LogEntry:
        return LogEntry(
            timestamp=self._now(),
            category=category.value,
            event_type=event_type,
            run_id=get_run_id(),
            contract_name=contract_name,
            data=data,
            metadata=metadata or {},
        )

    def log_detector_run(
        self,
        contract_name: str,
        detector: str,
        status: str,
        duration_seconds: float = 0.0,
        findings_count: int = 0,
        error: Optional[str] = None,
    ):
        """
        Log one detector execution on one contract

        Saves to:
        - JSON: <logs>/raw/detector_runs/...
        - SQLite: detector_runs table
        """
        entry = self._entry(LogCategory.DETECTOR_RUN, "detector_run", contract_name, {
            "detector": detector,
            "status": status,
            "duration_seconds": duration_seconds,
            "findings_count": findings_count,
            "error": error,
        })
        self._save_json(LogCategory.DETECTOR_RUN, f"{contract_name}_{detector}", entry)
        self._insert("""
            INSERT INTO detector_runs
            (timestamp, run_id, contract_name, detector, status, duration_seconds, findings_count, error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (entry.timestamp, entry.run_id, contract_name, detector, status, duration_seconds, findings_count, error))

    def log_diagnostic(self, diagnostic):
        """Log a Diagnostic record (models.findings.Diagnostic)"""
        entry = self._entry(LogCategory.DIAGNOSTIC, diagnostic.kind.value, diagnostic.contract, diagnostic.to_dict())
        self._save_json(LogCategory.DIAGNOSTIC, f"{diagnostic.contract or 'batch'}_{diagnostic.kind.value}", entry)
        self._insert("""
            INSERT INTO diagnostics
            (timestamp, run_id, kind, contract_name, function_name, detector, message)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            entry.timestamp, entry.run_id, diagnostic.kind.value, diagnostic.contract,
            diagnostic.function, diagnostic.detector, diagnostic.message,
        ))

    def log_dataflow_solve(self, contract_name: str, result):
        """Log the statistics of one DataflowResult"""
        name = result.key[0]
        entry = self._entry(LogCategory.DATAFLOW, "solve", contract_name, {
            "function": result.function_name,
            "analysis": name,
            "direction": result.key[1],
            "iterations": result.iterations,
            "changes": result.changes,
            "converged": result.converged,
            "duration_seconds": result.elapsed_seconds,
        })
        self._save_json(LogCategory.DATAFLOW, f"{contract_name}_{result.function_name}_{name}", entry)
        self._insert("""
            INSERT INTO dataflow_solves
            (timestamp, run_id, contract_name, function_name, analysis, iterations, changes, converged, duration_seconds)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            entry.timestamp, entry.run_id, contract_name, result.function_name, name,
            result.iterations, result.changes, int(result.converged), result.elapsed_seconds,
        ))

    def log_batch(self, batch):
        """Log the summary of a BatchResult"""
        summary = batch.to_dict()
        stats = summary["stats"]
        entry = self._entry(LogCategory.BATCH, "batch", None, {
            "contracts": stats["contracts"],
            "findings": stats["total_findings"],
            "diagnostics": len(batch.diagnostics),
            "exit_code": summary["exit_code"],
            "duration_seconds": batch.total_time,
        }, metadata={"by_impact": stats["by_impact"], "timed_out": stats["timed_out"]})
        self._save_json(LogCategory.BATCH, "batch", entry)
        self._insert("""
            INSERT INTO batches
            (timestamp, run_id, contracts, findings, diagnostics, exit_code, duration_seconds, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            entry.timestamp, entry.run_id, stats["contracts"], stats["total_findings"], len(batch.diagnostics),
            summary["exit_code"], batch.total_time, json.dumps(entry.metadata),
        ))

    def log_error(
        self,
        component: str,
        contract_name: Optional[str],
        error_type: str,
        error_message: str,
        context: Optional[Dict[str, Any]] = None
    ):
        """Log structured error information; also surfaces it through the module logger"""
        entry = self._entry(LogCategory.ERROR, error_type, contract_name, {
            "component": component,
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        })
        self._save_json(LogCategory.ERROR, f"{contract_name or 'batch'}_{component}_error", entry)
        self._insert("""
            INSERT INTO errors
            (timestamp, run_id, component, contract_name, error_type, error_message, context)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            entry.timestamp, entry.run_id, component, contract_name, error_type, error_message,
            json.dumps(context or {}, default=str),
        ))
        logger.error(
            f"{component} failed during {error_type}: {error_message}",
            extra={"component": component, "contract": contract_name, "run_id": entry.run_id},
        )

    def query_detector_runs(self, contract_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Query detector runs from database"""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            if contract_name:
                cursor.execute("""
                    SELECT run_id, contract_name, detector, status, duration_seconds, findings_count, error
                    FROM detector_runs
                    WHERE contract_name = ?
                    ORDER BY id
                """, (contract_name,))
            else:
                cursor.execute("""
                    SELECT run_id, contract_name, detector, status, duration_seconds, findings_count, error
                    FROM detector_runs
                    ORDER BY id
                """)

            results = [
                {
                    "run_id": row[0],
                    "contract_name": row[1],
                    "detector": row[2],
                    "status": row[3],
                    "duration_seconds": row[4],
                    "findings_count": row[5],
                    "error": row[6],
                }
                for row in cursor.fetchall()
            ]

        return results

    def query_diagnostics(self, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        """Query diagnostics from database, optionally of one kind"""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            if kind:
                cursor.execute("""
                    SELECT run_id, kind, contract_name, function_name, detector, message
                    FROM diagnostics
                    WHERE kind = ?
                    ORDER BY id
                """, (kind,))
            else:
                cursor.execute("""
                    SELECT run_id, kind, contract_name, function_name, detector, message
                    FROM diagnostics
                    ORDER BY id
                """)

            results = [
                {
                    "run_id": row[0],
                    "kind": row[1],
                    "contract_name": row[2],
                    "function_name": row[3],
                    "detector": row[4],
                    "message": row[5],
                }
                for row in cursor.fetchall()
            ]

        return results
