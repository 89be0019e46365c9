from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .policy import RetryPolicy


class EngineSettings(BaseSettings):
    """Environment-driven engine settings (prefix ``BDE_``, e.g. ``BDE_MAX_RETRIES=5``)."""

    model_config = SettingsConfigDict(
        env_prefix="BDE_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    engine_id: str = "behavior-delivery"

    # loop periods, seconds
    scheduler_interval: float = 0.1
    coordination_interval: float = 0.5

    # retry policy
    max_retries: int = 3
    initial_backoff_ms: int = 0
    max_backoff_ms: int = 0
    backoff_multiplier: float = 2.0
    jitter: bool = False

    dependency_mode: Literal["permissive", "strict"] = "permissive"
    max_in_flight: Optional[int] = None
    dispatch_timeout_ms: Optional[float] = None
    queue_capacity: Optional[int] = None
    history_limit: int = 10_000
    metrics_port: Optional[int] = None

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_backoff_ms=self.initial_backoff_ms,
            max_backoff_ms=self.max_backoff_ms,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter,
        )


@lru_cache()
def get_settings() -> EngineSettings:
    return EngineSettings()
