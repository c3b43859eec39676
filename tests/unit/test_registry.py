import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(ROOT / "src"))

from cal.analyses import CallWriteOrdering, ReachingDefinitions  # noqa: E402
from cal.detectors import (  # noqa: E402
    ALL_DETECTORS,
    AbstractDetector,
    DetectorRegistry,
    ReentrancyDetector,
    UncheckedLowLevelCallDetector,
    UninitializedStorageDetector,
    default_registry,
)


class Nameless(AbstractDetector):
    ARGUMENT = ""

    def analyze(self, context):
        return []


def test_default_registry_holds_every_detector():
    registry = default_registry()
    assert len(registry) == len(ALL_DETECTORS)
    assert registry.arguments() == [cls.ARGUMENT for cls in ALL_DETECTORS]
    assert "reentrancy" in registry
    assert "nope" not in registry


def test_register_accepts_classes():
    registry = DetectorRegistry()
    detector = registry.register(ReentrancyDetector)
    assert isinstance(detector, ReentrancyDetector)
    assert registry.get("reentrancy") is detector


def test_duplicate_and_nameless_are_rejected():
    registry = DetectorRegistry([ReentrancyDetector()])
    with pytest.raises(ValueError, match="registered twice"):
        registry.register(ReentrancyDetector())
    with pytest.raises(ValueError, match="no ARGUMENT"):
        registry.register(Nameless())


def test_select_keeps_registration_order(caplog):
    registry = default_registry()
    selected = registry.select(["unchecked-lowlevel", "reentrancy", "missing"])
    assert [d.ARGUMENT for d in selected] == ["reentrancy", "unchecked-lowlevel"]
    assert "missing" in caplog.text
    assert len(registry.select()) == len(ALL_DETECTORS)
    assert registry.select([]) == []


def test_declared_analysis_requirements():
    assert UninitializedStorageDetector.REQUIRES == (ReachingDefinitions,)
    assert ReentrancyDetector.REQUIRES == (CallWriteOrdering,)
    assert UncheckedLowLevelCallDetector.REQUIRES == ()
