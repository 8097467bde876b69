from functools import lru_cache
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# (default, min, max) for every clamped integer setting
INT_SETTING_BOUNDS: dict[str, tuple[int, int, int]] = {
    "fetch_batch_size": (25, 1, 500),
    "fetch_min_fetch_interval_minutes": (30, 1, 24 * 60),
    "fetch_error_backoff_minutes": (60, 1, 24 * 60),
    "metrics_batch_size": (50, 1, 500),
    "quote_credential_ttl_days": (30, 1, 365),
    "job_lease_ttl_minutes": (15, 1, 24 * 60),
}


def clamp_int(raw: Any, default: int, minimum: int, maximum: int) -> int:
    """
    Parse an integer setting, falling back to the default when it is not a number,
    then clamp it to [minimum, maximum].
    """
    if isinstance(raw, bool):
        value = default
    elif isinstance(raw, int):
        value = raw
    else:
        try:
            value = int(str(raw).strip())
        except (TypeError, ValueError):
            value = default
    return max(minimum, min(maximum, value))


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./portfolio_refresh.db"

    # Price ingestion job
    fetch_batch_size: int = 25
    fetch_min_fetch_interval_minutes: int = 30
    fetch_error_backoff_minutes: int = 60

    # Metrics recomputation job
    metrics_batch_size: int = 50

    # Yahoo Finance cookie/crumb cache lifetime
    quote_credential_ttl_days: int = 30

    # Run-level lease for batch jobs
    job_lease_ttl_minutes: int = 15

    # Reference catalog feeds
    nasdaq_directory_url: str = (
        "https://www.nasdaqtrader.com/dynamic/SymDir/nasdaqlisted.txt"
    )
    otherlisted_directory_url: str = (
        "https://www.nasdaqtrader.com/dynamic/SymDir/otherlisted.txt"
    )

    http_timeout_seconds: float = 10.0

    @field_validator(*INT_SETTING_BOUNDS.keys(), mode="before")
    @classmethod
    def _clamp_bounded_ints(cls, value: Any, info) -> int:
        default, minimum, maximum = INT_SETTING_BOUNDS[info.field_name]
        return clamp_int(value, default, minimum, maximum)


@lru_cache
def get_settings() -> Settings:
    return Settings()
