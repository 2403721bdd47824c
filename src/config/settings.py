"""
Runtime settings for the Funnel Recovery Engine.

All values come from environment variables (see EngineSettings.from_env).
Numeric values that do not parse, or fall outside their valid range,
raise ConfigurationError at startup rather than at the first sweep.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.lib.exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./recovery.db"


@dataclass(frozen=True)
class EngineSettings:
    """Tunable knobs for selection, dedup, sweeps and delivery."""

    database_url: str = DEFAULT_DATABASE_URL

    # Selection
    epsilon: float = 0.2
    min_samples: int = 5
    top_k: int = 5

    # Experiment dedup
    dedup_window: timedelta = timedelta(hours=1)

    # Periodic tasks
    sweep_interval_seconds: float = 60.0
    dispatch_interval_seconds: float = 60.0
    sweep_batch_size: int = 100
    dispatch_batch_size: int = 100
    scheduler_enabled: bool = True

    # Delivery
    delivery_timeout_seconds: float = 10.0
    max_delivery_attempts: int = 5
    retry_backoff_seconds: float = 60.0
    max_retry_backoff_seconds: float = 3600.0
    breaker_failure_threshold: int = 5
    breaker_recovery_seconds: float = 300.0
    clevertap_account_id: str | None = None
    clevertap_passcode: str | None = None

    # Day-part send times (next_morning / next_evening) use this zone
    local_timezone: str = "UTC"

    def __post_init__(self) -> None:
        if not 0.0 <= self.epsilon <= 1.0:
            raise ConfigurationError(f"epsilon must be within [0, 1], got {self.epsilon}")
        for name in (
            "min_samples",
            "top_k",
            "sweep_batch_size",
            "dispatch_batch_size",
            "max_delivery_attempts",
            "breaker_failure_threshold",
        ):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")
        for name in (
            "sweep_interval_seconds",
            "dispatch_interval_seconds",
            "delivery_timeout_seconds",
            "retry_backoff_seconds",
            "max_retry_backoff_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.dedup_window < timedelta(0):
            raise ConfigurationError("dedup_window must not be negative")
        try:
            ZoneInfo(self.local_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone '{self.local_timezone}'") from e

    @property
    def tz(self) -> ZoneInfo:
        """Timezone used for day-part timings."""
        return ZoneInfo(self.local_timezone)

    @property
    def has_clevertap_credentials(self) -> bool:
        return bool(self.clevertap_account_id and self.clevertap_passcode)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineSettings:
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ConfigurationError: On unparsable or out-of-range values
        """
        env = os.environ if environ is None else environ

        def _float(name: str, default: float) -> float:
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return float(raw)
            except ValueError as e:
                raise ConfigurationError(f"{name} must be a number, got '{raw}'") from e

        def _int(name: str, default: int) -> int:
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError as e:
                raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from e

        return cls(
            database_url=env.get("RECOVERY_DATABASE_URL", DEFAULT_DATABASE_URL),
            epsilon=_float("RECOVERY_EPSILON", 0.2),
            min_samples=_int("RECOVERY_MIN_SAMPLES", 5),
            top_k=_int("RECOVERY_TOP_K", 5),
            dedup_window=timedelta(seconds=_float("RECOVERY_DEDUP_WINDOW_SECONDS", 3600)),
            sweep_interval_seconds=_float("RECOVERY_SWEEP_INTERVAL_SECONDS", 60),
            dispatch_interval_seconds=_float("RECOVERY_DISPATCH_INTERVAL_SECONDS", 60),
            sweep_batch_size=_int("RECOVERY_SWEEP_BATCH_SIZE", 100),
            dispatch_batch_size=_int("RECOVERY_DISPATCH_BATCH_SIZE", 100),
            scheduler_enabled=env.get("RECOVERY_SCHEDULER_ENABLED", "1") == "1",
            delivery_timeout_seconds=_float("RECOVERY_DELIVERY_TIMEOUT_SECONDS", 10),
            max_delivery_attempts=_int("RECOVERY_MAX_DELIVERY_ATTEMPTS", 5),
            retry_backoff_seconds=_float("RECOVERY_RETRY_BACKOFF_SECONDS", 60),
            clevertap_account_id=env.get("CLEVERTAP_ACCOUNT_ID") or None,
            clevertap_passcode=env.get("CLEVERTAP_PASSCODE") or None,
            local_timezone=env.get("RECOVERY_LOCAL_TIMEZONE", "UTC"),
        )


__all__ = ["DEFAULT_DATABASE_URL", "EngineSettings"]
