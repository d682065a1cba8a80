"""Engine configuration."""

import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, SecretStr, field_validator

from .constants import (
    BACKEND_MAX_ROWS,
    CLIENT_BATCH_SIZE,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_REQUESTS_PER_SECOND,
    DEFAULT_TIMEZONE,
    DEFAULT_WAVE_DELAY_SECONDS,
    MAX_CACHED_BATCHES,
)

ENV_PREFIX = "REPLY_ANALYTICS_"


class EngineConfig(BaseModel):
    """Explicit configuration passed to the engine and its adapter.

    Attributes:
        base_url: REST endpoint of the remote store.
        api_key: API key sent with every request.
        page_size: Rows per page request, capped by the backend row limit.
        max_concurrency: Page requests issued per wave.
        wave_delay_seconds: Pause between waves to stay under rate limits.
        requests_per_second: Adapter-side request rate limit.
        request_timeout_seconds: Per-request timeout in the adapter.
        max_retries: Adapter-side attempts for transient failures.
        client_batch_size: Rows per batch for incremental loading.
        max_cached_batches: Batches kept by the incremental cache.
        timezone: IANA zone used for day and week buckets.
    """

    base_url: str = ""
    api_key: SecretStr = SecretStr("")
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=BACKEND_MAX_ROWS)
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)
    wave_delay_seconds: float = Field(default=DEFAULT_WAVE_DELAY_SECONDS, ge=0)
    requests_per_second: int = Field(default=DEFAULT_REQUESTS_PER_SECOND, ge=1)
    request_timeout_seconds: float = Field(default=DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    client_batch_size: int = Field(default=CLIENT_BATCH_SIZE, ge=1, le=BACKEND_MAX_ROWS)
    max_cached_batches: int = Field(default=MAX_CACHED_BATCHES, ge=1)
    timezone: str = DEFAULT_TIMEZONE

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, **overrides) -> "EngineConfig":
        """Build a config from environment variables.

        Reads ``SUPABASE_URL`` and ``SUPABASE_KEY`` plus optional
        ``REPLY_ANALYTICS_<FIELD>`` overrides (e.g. ``REPLY_ANALYTICS_PAGE_SIZE``).
        Explicit keyword overrides win over the environment.

        Returns:
            EngineConfig: Validated configuration.
        """
        values: dict[str, object] = {
            "base_url": os.environ.get("SUPABASE_URL", ""),
            "api_key": os.environ.get("SUPABASE_KEY", ""),
        }
        for name in cls.model_fields:
            env_value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
            if env_value is not None:
                values[name] = env_value
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)
