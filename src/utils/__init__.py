"""utilities for bastion"""
from .logging import RunLogger, LogCategory, LogEntry
from .correlation import analysis_context, get_run_id

__all__ = [
    "RunLogger",
    "LogCategory",
    "LogEntry",
    "analysis_context",
    "get_run_id",
]
