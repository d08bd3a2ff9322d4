"""
EventNexus Autopilot - Settings
Runtime configuration loaded from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional, TypeVar

from .exceptions import InvalidConfigException

T = TypeVar('T')

DEFAULT_SOCIAL_PLATFORMS = ["facebook", "instagram", "twitter", "linkedin"]


def _env(key: str, cast: Callable[[str], T], default: T) -> T:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise InvalidConfigException(key, raw, str(e)) from e


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"expected a boolean, got '{raw}'")


def _parse_list(raw: str) -> List[str]:
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


@dataclass
class AutopilotSettings:
    # Backend (managed Postgres REST API)
    backend_url: str = ""
    service_key: str = ""

    # Social posting edge function
    social_endpoint: str = ""
    social_platforms: List[str] = field(default_factory=lambda: list(DEFAULT_SOCIAL_PLATFORMS))
    max_post_attempts: int = 3

    # Concurrency
    redis_url: str = ""
    max_concurrency: int = 4
    cycle_timeout_seconds: float = 300.0
    idempotency_window_minutes: int = 60
    schedule_interval_minutes: int = 60

    # Budget
    scale_up_pct: float = 0.5
    scale_down_pct: float = 0.25
    max_budget: Optional[float] = None

    dry_run: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.max_post_attempts < 1:
            raise InvalidConfigException("AUTOPILOT_MAX_POST_ATTEMPTS", self.max_post_attempts, "must be >= 1")
        if self.max_concurrency < 1:
            raise InvalidConfigException("AUTOPILOT_MAX_CONCURRENCY", self.max_concurrency, "must be >= 1")
        if self.cycle_timeout_seconds <= 0:
            raise InvalidConfigException("AUTOPILOT_CYCLE_TIMEOUT_SECONDS", self.cycle_timeout_seconds, "must be > 0")
        if self.idempotency_window_minutes < 0:
            raise InvalidConfigException("AUTOPILOT_IDEMPOTENCY_WINDOW_MINUTES", self.idempotency_window_minutes, "must be >= 0")
        if not 0 < self.scale_up_pct <= 1.0:
            raise InvalidConfigException("AUTOPILOT_SCALE_UP_PCT", self.scale_up_pct, "must be in (0, 1]")
        if not 0 < self.scale_down_pct < 1.0:
            raise InvalidConfigException("AUTOPILOT_SCALE_DOWN_PCT", self.scale_down_pct, "must be in (0, 1)")
        if self.max_budget is not None and self.max_budget <= 0:
            raise InvalidConfigException("AUTOPILOT_MAX_BUDGET", self.max_budget, "must be > 0")
        if self.log_format not in ("json", "console"):
            raise InvalidConfigException("LOG_FORMAT", self.log_format, "must be 'json' or 'console'")

    @classmethod
    def from_env(cls) -> "AutopilotSettings":
        return cls(
            backend_url=os.getenv("AUTOPILOT_BACKEND_URL", ""),
            service_key=os.getenv("AUTOPILOT_SERVICE_KEY", ""),
            social_endpoint=os.getenv("AUTOPILOT_SOCIAL_ENDPOINT", ""),
            social_platforms=_env("AUTOPILOT_SOCIAL_PLATFORMS", _parse_list, list(DEFAULT_SOCIAL_PLATFORMS)),
            max_post_attempts=_env("AUTOPILOT_MAX_POST_ATTEMPTS", int, 3),
            redis_url=os.getenv("AUTOPILOT_REDIS_URL", ""),
            max_concurrency=_env("AUTOPILOT_MAX_CONCURRENCY", int, 4),
            cycle_timeout_seconds=_env("AUTOPILOT_CYCLE_TIMEOUT_SECONDS", float, 300.0),
            idempotency_window_minutes=_env("AUTOPILOT_IDEMPOTENCY_WINDOW_MINUTES", int, 60),
            schedule_interval_minutes=_env("AUTOPILOT_SCHEDULE_INTERVAL_MINUTES", int, 60),
            scale_up_pct=_env("AUTOPILOT_SCALE_UP_PCT", float, 0.5),
            scale_down_pct=_env("AUTOPILOT_SCALE_DOWN_PCT", float, 0.25),
            max_budget=_env("AUTOPILOT_MAX_BUDGET", float, None),
            dry_run=_env("AUTOPILOT_DRY_RUN", _parse_bool, False),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )
