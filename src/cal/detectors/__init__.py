"""vulnerability detectors"""
from .base import AbstractDetector
from .reentrancy import ReentrancyDetector
from .uninitialized_storage import UninitializedStorageDetector
from .access_control import AccessControlDetector
from .constant_function import ConstantFunctionStateDetector
from .unchecked_call import UncheckedLowLevelCallDetector
from .registry import ALL_DETECTORS, DetectorRegistry, default_registry

__all__ = [
    "AbstractDetector",
    "ReentrancyDetector",
    "UninitializedStorageDetector",
    "AccessControlDetector",
    "ConstantFunctionStateDetector",
    "UncheckedLowLevelCallDetector",
    "ALL_DETECTORS",
    "DetectorRegistry",
    "default_registry",
]
