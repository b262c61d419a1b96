"""Configuration values for the ingestion engine."""

from dataclasses import dataclass
from enum import Enum


class RetentionPolicy(Enum):
    """What happens to an identity once it vanishes from the snapshot."""

    RETAIN_FOREVER = "retain-forever"  # Keep as a DEAD tombstone with its history
    EVICT_ON_DISAPPEARANCE = "evict-on-disappearance"  # Drop accumulator and series


@dataclass(frozen=True)
class EngineConfig:
    """Engine settings. ``None`` caps mean unbounded series."""

    retention: RetentionPolicy = RetentionPolicy.RETAIN_FOREVER
    max_system_points: int | None = None
    max_process_points: int | None = None  # Per identity
    root_pid: int = 1  # Never looked up in the table as a parent

    def __post_init__(self) -> None:
        for name in ("max_system_points", "max_process_points"):
            cap = getattr(self, name)
            if cap is not None and cap < 1:
                raise ValueError(f"{name} must be positive or None, got {cap}")


DEFAULT_CONFIG = EngineConfig()
