"""Fetch layer: backoff, retry, request cache and source fallback."""

from .backoff import BackoffPolicy
from .cache import RequestCache
from .fallback import SourceFallbackController
from .retry import RetryConfig, RetryExecutor, is_retryable, retry_on_status

__all__ = [
    "YahooClient",
    "BackoffPolicy",
    "RequestCache",
    "RetryConfig",
    "RetryExecutor",
    "SourceFallbackController",
    "is_retryable",
    "retry_on_status",
]


def __getattr__(name: str):
    if name == "YahooClient":
        from .client import YahooClient as _YahooClient

        return _YahooClient
    raise AttributeError(f"module {__name__} has no attribute {name!r}")
