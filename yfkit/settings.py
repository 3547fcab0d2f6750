"""Centralized client settings powered by Pydantic.

Environment matrix:

| Section | Environment Variable        | Default                                                  | Purpose                                  |
|---------|-----------------------------|----------------------------------------------------------|------------------------------------------|
| HTTP    | `YF_USER_AGENT`             | desktop Chrome UA                                        | User-Agent for REST and websocket        |
| HTTP    | `YF_HTTP_TIMEOUT`           | `10`                                                     | Per-request timeout (seconds)            |
| HTTP    | `YF_BASE_CHART`             | `https://query1.finance.yahoo.com/v8/finance/chart/`     | Chart API base (symbol appended)         |
| HTTP    | `YF_BASE_QUOTE`             | `https://finance.yahoo.com/quote/`                       | Quote HTML page base (scrape path)       |
| HTTP    | `YF_BASE_QUOTE_API`         | `https://query1.finance.yahoo.com/v10/finance/quoteSummary/` | quoteSummary API base                |
| HTTP    | `YF_BASE_QUOTE_V7`          | `https://query1.finance.yahoo.com/v7/finance/quote`      | Batch quote API                          |
| HTTP    | `YF_BASE_STREAM`            | `wss://streamer.finance.yahoo.com/?version=2`            | Live pricing websocket                   |
| Retry   | `YF_RETRY_MAX_ATTEMPTS`     | `5`                                                      | Total attempts per source path           |
| Retry   | `YF_RETRY_BASE_DELAY`       | `0.2`                                                    | First backoff delay (seconds)            |
| Retry   | `YF_RETRY_MULTIPLIER`       | `2.0`                                                    | Exponential growth factor                |
| Retry   | `YF_RETRY_MAX_DELAY`        | `3.0`                                                    | Ceiling for a single backoff             |
| Retry   | `YF_RETRY_JITTER`           | `true`                                                   | Multiplicative jitter on backoff         |
| Cache   | `YF_CACHE_ENABLED`          | `true`                                                   | Serve fresh entries from memory          |
| Cache   | `YF_CACHE_TTL`              | `60`                                                     | Default TTL (seconds)                    |
| Cache   | `YF_CACHE_TTL_QUOTE`        | `5`                                                      | TTL for quote payloads                   |
| Cache   | `YF_CACHE_TTL_HISTORY`      | `300`                                                    | TTL for chart payloads                   |
| Cache   | `YF_CACHE_TTL_PROFILE`      | `3600`                                                   | TTL for profile payloads                 |
| Stream  | `YF_STREAM_QUEUE_SIZE`      | `1024`                                                   | Bounded update channel capacity          |
| Stream  | `YF_STREAM_SEND_TIMEOUT`    | `5.0`                                                    | Blocking put timeout before dropping     |
| Stream  | `YF_STREAM_OVERFLOW`        | `block`                                                  | `block` or `drop_oldest`                 |
| Stream  | `YF_STREAM_DIFF_ONLY`       | `true`                                                   | Suppress repeated identical updates      |
| Stream  | `YF_STREAM_RECONNECT`       | `true`                                                   | Reconnect after transport errors         |
| Stream  | `YF_STREAM_MAX_RECONNECTS`  | `5`                                                      | Consecutive reconnect budget             |
| Stream  | `YF_STREAM_POLL_INTERVAL`   | `1.0`                                                    | Polling fallback interval (seconds)      |
| Stream  | `YF_STREAM_METHOD`          | `websocket_with_fallback`                                | Transport selection                      |
| Source  | `YF_SOURCE_PREFERENCE`      | `api_then_scrape`                                        | API vs scrape ordering                   |

The settings objects below source environment variables when instantiated and are
intended to be treated as read-only. Clients take a ``Settings`` instance so tests
can build isolated configurations without touching the environment.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from yfkit.core.models import SourcePreference, TtlClass

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)


class _SettingsBase(BaseSettings):
    """Common configuration for BaseSettings subclasses."""

    model_config = SettingsConfigDict(
        env_prefix="",
        populate_by_name=True,
        extra="ignore",
        case_sensitive=True,
        frozen=True,
    )


class HttpSettings(_SettingsBase):
    """Endpoints, timeout and UA for outbound requests."""

    user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="YF_USER_AGENT")
    timeout: float = Field(default=10.0, alias="YF_HTTP_TIMEOUT")
    base_chart: str = Field(
        default="https://query1.finance.yahoo.com/v8/finance/chart/",
        alias="YF_BASE_CHART",
    )
    base_quote: str = Field(
        default="https://finance.yahoo.com/quote/", alias="YF_BASE_QUOTE"
    )
    base_quote_api: str = Field(
        default="https://query1.finance.yahoo.com/v10/finance/quoteSummary/",
        alias="YF_BASE_QUOTE_API",
    )
    base_quote_v7: str = Field(
        default="https://query1.finance.yahoo.com/v7/finance/quote",
        alias="YF_BASE_QUOTE_V7",
    )
    base_stream: str = Field(
        default="wss://streamer.finance.yahoo.com/?version=2", alias="YF_BASE_STREAM"
    )

    @field_validator("timeout", mode="before")
    @classmethod
    def _coerce_timeout(cls, value: float | str | None) -> float:
        if value in (None, ""):
            return 10.0
        try:
            return max(0.1, float(value))
        except (TypeError, ValueError):
            return 10.0


class RetrySettings(_SettingsBase):
    """Defaults for the retry executor and its backoff policy."""

    max_attempts: int = Field(default=5, alias="YF_RETRY_MAX_ATTEMPTS")
    base_delay: float = Field(default=0.2, alias="YF_RETRY_BASE_DELAY")
    multiplier: float = Field(default=2.0, alias="YF_RETRY_MULTIPLIER")
    max_delay: float = Field(default=3.0, alias="YF_RETRY_MAX_DELAY")
    jitter: bool = Field(default=True, alias="YF_RETRY_JITTER")

    @field_validator("max_attempts", mode="before")
    @classmethod
    def _coerce_attempts(cls, value: int | str | None) -> int:
        if value in (None, ""):
            return 5
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return 5


class CacheSettings(_SettingsBase):
    """TTL per payload class for the in-memory request cache."""

    enabled: bool = Field(default=True, alias="YF_CACHE_ENABLED")
    default_ttl: float = Field(default=60.0, alias="YF_CACHE_TTL")
    quote_ttl: float = Field(default=5.0, alias="YF_CACHE_TTL_QUOTE")
    history_ttl: float = Field(default=300.0, alias="YF_CACHE_TTL_HISTORY")
    profile_ttl: float = Field(default=3600.0, alias="YF_CACHE_TTL_PROFILE")

    @computed_field
    @property
    def ttl_by_class(self) -> dict[TtlClass, float]:
        if not self.enabled:
            return {cls: 0.0 for cls in TtlClass}
        return {
            TtlClass.QUOTE: self.quote_ttl,
            TtlClass.HISTORY: self.history_ttl,
            TtlClass.PROFILE: self.profile_ttl,
            TtlClass.DEFAULT: self.default_ttl,
        }


class StreamSettings(_SettingsBase):
    """Defaults for live quote sessions."""

    queue_size: int = Field(default=1024, alias="YF_STREAM_QUEUE_SIZE")
    send_timeout: float | None = Field(default=5.0, alias="YF_STREAM_SEND_TIMEOUT")
    overflow: str = Field(default="block", alias="YF_STREAM_OVERFLOW")
    diff_only: bool = Field(default=True, alias="YF_STREAM_DIFF_ONLY")
    reconnect: bool = Field(default=True, alias="YF_STREAM_RECONNECT")
    max_reconnects: int = Field(default=5, alias="YF_STREAM_MAX_RECONNECTS")
    poll_interval: float = Field(default=1.0, alias="YF_STREAM_POLL_INTERVAL")
    method: str = Field(default="websocket_with_fallback", alias="YF_STREAM_METHOD")

    @field_validator("send_timeout", mode="before")
    @classmethod
    def _coerce_send_timeout(cls, value: float | str | None) -> float | None:
        if value is None:
            return None
        if isinstance(value, str) and value.strip().lower() in {"", "none", "0"}:
            return None
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            return 5.0
        return timeout if timeout > 0 else None

    @field_validator("overflow", "method", mode="before")
    @classmethod
    def _lower(cls, value: str | None) -> str | None:
        return value.strip().lower() if isinstance(value, str) else value


class SourceSettings(_SettingsBase):
    """Ordering between the structured API and the HTML scrape path."""

    preference: SourcePreference = Field(
        default=SourcePreference.API_THEN_SCRAPE, alias="YF_SOURCE_PREFERENCE"
    )

    @field_validator("preference", mode="before")
    @classmethod
    def _coerce_preference(cls, value: str | SourcePreference | None):
        if value in (None, ""):
            return SourcePreference.API_THEN_SCRAPE
        if isinstance(value, str):
            return value.strip().lower()
        return value


class Settings(BaseModel):
    """Aggregate accessor for domain-specific settings."""

    http: HttpSettings = Field(default_factory=HttpSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)

    model_config = {
        "frozen": True,
        "arbitrary_types_allowed": True,
    }


def get_settings() -> Settings:
    """Instantiate settings from the current environment."""
    return Settings()


def reload_settings() -> Settings:
    """Alias for get_settings to maintain a consistent API."""
    return get_settings()


def get_http_settings() -> HttpSettings:
    return get_settings().http


def get_retry_settings() -> RetrySettings:
    return get_settings().retry


def get_cache_settings() -> CacheSettings:
    return get_settings().cache


def get_stream_settings() -> StreamSettings:
    return get_settings().stream


__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "get_http_settings",
    "get_retry_settings",
    "get_cache_settings",
    "get_stream_settings",
    "HttpSettings",
    "RetrySettings",
    "CacheSettings",
    "StreamSettings",
    "SourceSettings",
    "DEFAULT_USER_AGENT",
]
