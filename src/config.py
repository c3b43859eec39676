import os
import warnings
from pathlib import Path
from typing import Optional, List, FrozenSet
from dataclasses import dataclass, field


def safe_int(value: Optional[str], default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    if value is None:
        return default
    try:
        result = int(value)
        if min_val is not None and result < min_val:
            warnings.warn(
                f"Value {result} is below minimum {min_val}, using default {default}",
                RuntimeWarning,
                stacklevel=2
            )
            return default
        if max_val is not None and result > max_val:
            warnings.warn(
                f"Value {result} exceeds maximum {max_val}, using default {default}",
                RuntimeWarning,
                stacklevel=2
            )
            return default
        return result
    except (ValueError, TypeError):
        return default


def safe_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    warnings.warn(
        f"Unrecognized boolean value '{value}', using default {default}",
        RuntimeWarning,
        stacklevel=2
    )
    return default


def parse_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


IMPACT_LEVELS = ("informational", "low", "medium", "high", "critical")
CONFIDENCE_LEVELS = ("low", "medium", "high")


@dataclass(frozen=True)
class AnalysisOptions:
    """options the analysis core honors for one batch"""
    enabled_detectors: Optional[FrozenSet[str]] = None
    min_impact: str = "informational"
    min_confidence: str = "low"
    per_contract_timeout_ms: Optional[int] = None
    max_workers: int = 4
    parallel_detectors: bool = True
    parallel_contracts: bool = False
    dataflow_max_iterations: int = 100_000
    dedup_mode: str = "exact"

    def __post_init__(self) -> None:
        if self.min_impact.lower() not in IMPACT_LEVELS:
            raise ValueError(f"Unknown min_impact '{self.min_impact}' (expected one of {IMPACT_LEVELS})")
        if self.min_confidence.lower() not in CONFIDENCE_LEVELS:
            raise ValueError(f"Unknown min_confidence '{self.min_confidence}' (expected one of {CONFIDENCE_LEVELS})")
        if self.per_contract_timeout_ms is not None and self.per_contract_timeout_ms <= 0:
            raise ValueError("per_contract_timeout_ms must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.dedup_mode not in {"off", "exact"}:
            raise ValueError(f"Unknown dedup_mode '{self.dedup_mode}'")
        if self.enabled_detectors is not None and not isinstance(self.enabled_detectors, frozenset):
            object.__setattr__(self, "enabled_detectors", frozenset(self.enabled_detectors))

    @property
    def per_contract_timeout_seconds(self) -> Optional[float]:
        if self.per_contract_timeout_ms is None:
            return None
        return self.per_contract_timeout_ms / 1000.0


@dataclass
class BastionConfig:
    PROJECT_ROOT: Path = field(default_factory=lambda: Path(
        os.getenv("BASTION_ROOT")
        or Path(__file__).parent.parent.absolute()
    ))

    @property
    def DATA_DIR(self) -> Path:
        return self.PROJECT_ROOT / "data"

    @property
    def LOGS_DIR(self) -> Path:
        return self.DATA_DIR / "logs"

    @property
    def LOGS_RAW_DIR(self) -> Path:
        return self.LOGS_DIR / "raw"

    @property
    def LOGS_DB_PATH(self) -> Path:
        return self.LOGS_DIR / "runs.db"

    ENABLED_DETECTORS: List[str] = field(default_factory=lambda: parse_csv(os.getenv("BASTION_DETECTORS")))
    MIN_IMPACT: str = field(default_factory=lambda: os.getenv("BASTION_MIN_IMPACT", "informational").lower())
    MIN_CONFIDENCE: str = field(default_factory=lambda: os.getenv("BASTION_MIN_CONFIDENCE", "low").lower())

    # 0 disables the per-contract timeout
    CONTRACT_TIMEOUT_MS: int = field(default_factory=lambda: safe_int(
        os.getenv("BASTION_CONTRACT_TIMEOUT_MS"), default=0, min_val=0, max_val=3_600_000))
    MAX_WORKERS: int = field(default_factory=lambda: safe_int(
        os.getenv("BASTION_MAX_WORKERS"), default=4, min_val=1, max_val=64))
    PARALLEL_DETECTORS: bool = field(default_factory=lambda: safe_bool(os.getenv("BASTION_PARALLEL_DETECTORS"), True))
    PARALLEL_CONTRACTS: bool = field(default_factory=lambda: safe_bool(os.getenv("BASTION_PARALLEL_CONTRACTS"), False))
    DATAFLOW_MAX_ITERATIONS: int = field(default_factory=lambda: safe_int(
        os.getenv("BASTION_DATAFLOW_MAX_ITERATIONS"), default=100_000, min_val=100, max_val=10_000_000))

    DEDUP_MODE: str = field(default_factory=lambda: os.getenv("BASTION_DEDUP_MODE", "exact"))

    ENABLE_RUN_LOG: bool = field(default_factory=lambda: safe_bool(os.getenv("BASTION_RUN_LOG"), False))
    LOG_TO_SQLITE: bool = field(default_factory=lambda: safe_bool(os.getenv("BASTION_LOG_TO_SQLITE"), True))

    def __post_init__(self) -> None:
        self.DEDUP_MODE = (self.DEDUP_MODE or "exact").lower()
        if self.DEDUP_MODE not in {"off", "exact"}:
            warnings.warn(
                f"[config] Invalid DEDUP_MODE='{self.DEDUP_MODE}', defaulting to 'exact'",
                RuntimeWarning,
                stacklevel=2,
            )
            self.DEDUP_MODE = "exact"
        if self.MIN_IMPACT not in IMPACT_LEVELS:
            warnings.warn(
                f"[config] Invalid MIN_IMPACT='{self.MIN_IMPACT}', defaulting to 'informational'",
                RuntimeWarning,
                stacklevel=2,
            )
            self.MIN_IMPACT = "informational"
        if self.MIN_CONFIDENCE not in CONFIDENCE_LEVELS:
            warnings.warn(
                f"[config] Invalid MIN_CONFIDENCE='{self.MIN_CONFIDENCE}', defaulting to 'low'",
                RuntimeWarning,
                stacklevel=2,
            )
            self.MIN_CONFIDENCE = "low"

    def to_options(self) -> AnalysisOptions:
        return AnalysisOptions(
            enabled_detectors=frozenset(self.ENABLED_DETECTORS) if self.ENABLED_DETECTORS else None,
            min_impact=self.MIN_IMPACT,
            min_confidence=self.MIN_CONFIDENCE,
            per_contract_timeout_ms=self.CONTRACT_TIMEOUT_MS or None,
            max_workers=self.MAX_WORKERS,
            parallel_detectors=self.PARALLEL_DETECTORS,
            parallel_contracts=self.PARALLEL_CONTRACTS,
            dataflow_max_iterations=self.DATAFLOW_MAX_ITERATIONS,
            dedup_mode=self.DEDUP_MODE,
        )

    def ensure_directories(self):
        directories = [
            self.DATA_DIR,
            self.LOGS_DIR,
            self.LOGS_RAW_DIR,
        ]

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

    def validate(self):
        if not self.PROJECT_ROOT.exists():
            raise ValueError(f"Project root does not exist: {self.PROJECT_ROOT}")

        if self.ENABLE_RUN_LOG:
            self.ensure_directories()

    def summary(self) -> str:
        return f"""
Bastion Configuration:
  Project Root: {self.PROJECT_ROOT}
  Data Dir: {self.DATA_DIR}
  Detectors: {', '.join(self.ENABLED_DETECTORS) if self.ENABLED_DETECTORS else 'all'}
  Min Impact: {self.MIN_IMPACT}
  Min Confidence: {self.MIN_CONFIDENCE}
  Contract Timeout: {f'{self.CONTRACT_TIMEOUT_MS} ms' if self.CONTRACT_TIMEOUT_MS else 'none'}
  Workers: {self.MAX_WORKERS} (detectors parallel: {self.PARALLEL_DETECTORS}, contracts parallel: {self.PARALLEL_CONTRACTS})
  Dedup: {self.DEDUP_MODE}
  Run Log: {'Enabled' if self.ENABLE_RUN_LOG else 'Disabled'}
""".strip()


config = BastionConfig()
if os.getenv("BASTION_SKIP_VALIDATION") != "1":
    try:
        config.validate()
    except ValueError as e:
        warnings.warn(f"Configuration warning: {e}", RuntimeWarning)

PROJECT_ROOT = config.PROJECT_ROOT
DATA_DIR = config.DATA_DIR
LOGS_DIR = config.LOGS_DIR

if __name__ == "__main__":
    print(config.summary())
    print()

    print("paths:")
    print(f"  project root: {config.PROJECT_ROOT}")
    print(f"  data dir: {config.DATA_DIR}")
    print(f"  logs dir: {config.LOGS_DIR}")
