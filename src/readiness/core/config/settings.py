"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings

from readiness.core.cache.keys import DEFAULT_TTLS, CacheKind
from readiness.domains.health.domain_logic.config import AthleteProfile, ScoringConfig


class Settings(BaseSettings):
    """Readiness engine configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: there is no auth layer in front of the tools.
    readiness_host: str = "127.0.0.1"
    readiness_port: int = 8001
    readiness_log_level: str = "info"
    # Binding to a non-loopback host also requires this to be set.
    readiness_allow_insecure_bind: bool = False

    # Storage (signal bank)
    db_path: str = "~/.readiness/signals.db"
    encryption_key: str = ""
    user_id: str = "default"

    # Connectors
    apple_health_export_path: str = ""
    use_mock_data: bool = False

    # Scoring
    fetch_timeout_seconds: float = 8.0
    baseline_min_samples: int = 3
    anomaly_window_days: int = 7
    anomaly_min_signals: int = 1
    default_sleep_need_hours: float = 8.0

    # Athlete profile
    ftp_watts: float | None = None
    max_heart_rate: float = 190.0
    resting_heart_rate: float = 60.0
    sex: Literal["male", "female", "unspecified"] = "unspecified"

    # Cache TTLs (seconds)
    cache_ttl_score: float = DEFAULT_TTLS[CacheKind.SCORE]
    cache_ttl_activity: float = DEFAULT_TTLS[CacheKind.ACTIVITY]
    cache_ttl_health_metrics: float = DEFAULT_TTLS[CacheKind.HEALTH_METRICS]
    cache_ttl_baseline: float = DEFAULT_TTLS[CacheKind.BASELINE]
    cache_ttl_state: float = DEFAULT_TTLS[CacheKind.STATE]

    def scoring_config(self) -> ScoringConfig:
        """Build the immutable scoring configuration handed to the engine."""
        return ScoringConfig(
            baseline_min_samples=self.baseline_min_samples,
            fetch_timeout_seconds=self.fetch_timeout_seconds,
            default_sleep_need_hours=self.default_sleep_need_hours,
            anomaly_window_days=self.anomaly_window_days,
            anomaly_min_signals=self.anomaly_min_signals,
            profile=AthleteProfile(
                ftp_watts=self.ftp_watts,
                max_heart_rate=self.max_heart_rate,
                resting_heart_rate=self.resting_heart_rate,
                sex=self.sex,
            ),
        )

    def cache_ttls(self) -> dict[CacheKind, float]:
        return {
            CacheKind.SCORE: self.cache_ttl_score,
            CacheKind.ACTIVITY: self.cache_ttl_activity,
            CacheKind.HEALTH_METRICS: self.cache_ttl_health_metrics,
            CacheKind.BASELINE: self.cache_ttl_baseline,
            CacheKind.STATE: self.cache_ttl_state,
        }


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
