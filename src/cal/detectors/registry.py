"""explicit detector table"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Type

from cal.detectors.access_control import AccessControlDetector
from cal.detectors.base import AbstractDetector
from cal.detectors.constant_function import ConstantFunctionStateDetector
from cal.detectors.reentrancy import ReentrancyDetector
from cal.detectors.unchecked_call import UncheckedLowLevelCallDetector
from cal.detectors.uninitialized_storage import UninitializedStorageDetector

logger = logging.getLogger(__name__)

ALL_DETECTORS: tuple = (
    ReentrancyDetector,
    UninitializedStorageDetector,
    AccessControlDetector,
    ConstantFunctionStateDetector,
    UncheckedLowLevelCallDetector,
)


class DetectorRegistry:
    """detector instances by ARGUMENT, in registration order"""

    def __init__(self, detectors: Iterable[AbstractDetector] = ()):
        self._detectors: Dict[str, AbstractDetector] = {}
        for detector in detectors:
            self.register(detector)

    def register(self, detector: AbstractDetector) -> AbstractDetector:
        if isinstance(detector, type):
            detector = detector()
        argument = detector.ARGUMENT
        if not argument:
            raise ValueError(f"{type(detector).__name__} has no ARGUMENT")
        if argument in self._detectors:
            raise ValueError(f"detector '{argument}' registered twice")
        self._detectors[argument] = detector
        return detector

    def get(self, argument: str) -> Optional[AbstractDetector]:
        return self._detectors.get(argument)

    def select(self, enabled: Optional[Iterable[str]] = None) -> List[AbstractDetector]:
        """enabled detectors in registration order; None selects all"""
        if enabled is None:
            return list(self._detectors.values())
        wanted = set(enabled)
        unknown = sorted(wanted - set(self._detectors))
        if unknown:
            logger.warning(
                f"Unknown detectors ignored: {', '.join(unknown)}",
                extra={"unknown": unknown, "available": self.arguments()},
            )
        return [d for name, d in self._detectors.items() if name in wanted]

    def arguments(self) -> List[str]:
        return list(self._detectors)

    def __iter__(self) -> Iterator[AbstractDetector]:
        return iter(self._detectors.values())

    def __len__(self) -> int:
        return len(self._detectors)

    def __contains__(self, argument: str) -> bool:
        return argument in self._detectors


def default_registry(detector_classes: Iterable[Type[AbstractDetector]] = ALL_DETECTORS) -> DetectorRegistry:
    return DetectorRegistry(cls() for cls in detector_classes)
