"""logging package: dual-layer run log (json + sqlite) for analysis batches"""

# import types
from .types import LogCategory, LogEntry

# import core logger
from .core import RunLogger

# define public api
__all__ = [
    "LogCategory",
    "LogEntry",
    "RunLogger",
]
