"""run log types: categories for raw json files and the structured entry stored per event"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Any, Optional


class LogCategory(Enum):
    """log categories; each one is a subdirectory of the raw json log dir"""
    DETECTOR_RUN = "detector_runs"
    DATAFLOW = "dataflow"
    DIAGNOSTIC = "diagnostics"
    BATCH = "batches"
    SYSTEM_METRIC = "metrics"
    ERROR = "errors"


@dataclass
class LogEntry:
    timestamp: str
    category: str
    event_type: str
    run_id: Optional[str]
    contract_name: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "category": self.category,
            "event_type": self.event_type,
            "run_id": self.run_id,
            "contract_name": self.contract_name,
            "data": self.data,
            "metadata": self.metadata,
        }
