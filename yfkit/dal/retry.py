from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from loguru import logger

from yfkit.core.exceptions import FetchCancelled, StatusError, TransportError, YFError
from yfkit.dal.backoff import BackoffPolicy
from yfkit.settings import RetrySettings

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
RetryPredicate = Callable[[YFError], bool]


def is_retryable(error: YFError) -> bool:
    """Transport failures and 5xx statuses retry; everything else surfaces at once."""
    if isinstance(error, TransportError):
        return True
    if isinstance(error, StatusError):
        return error.is_server_error
    return False


def retry_on_status(codes: Iterable[int]) -> RetryPredicate:
    """Default classification plus extra statuses (e.g. 408/429)."""
    extra = frozenset(int(c) for c in codes)

    def _predicate(error: YFError) -> bool:
        if isinstance(error, StatusError) and error.code in extra:
            return True
        return is_retryable(error)

    return _predicate


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 5
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    retryable: RetryPredicate = is_retryable

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            backoff=BackoffPolicy.from_settings(settings),
        )

    @classmethod
    def disabled(cls) -> "RetryConfig":
        return cls(max_attempts=1)

    def with_attempts(self, max_attempts: int) -> "RetryConfig":
        return replace(self, max_attempts=max_attempts)


async def _race(awaitable: Awaitable[T], cancel: Optional[asyncio.Event]) -> T:
    """Await ``awaitable`` unless ``cancel`` fires first."""
    if cancel is None:
        return await awaitable
    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise FetchCancelled("cancelled before start")

    work = asyncio.ensure_future(awaitable)
    stop = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        stop.cancel()
        raise
    if work in done:
        stop.cancel()
        return work.result()

    work.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await work
    raise FetchCancelled("cancelled while in flight")


class RetryExecutor:
    """Bounded retry around one async fetch, classified by error kind."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep

    async def run(
        self,
        operation: Operation[T],
        config: Optional[RetryConfig] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
        label: str = "fetch",
    ) -> T:
        cfg = config or self.config
        attempt = 0
        while True:
            try:
                return await _race(operation(), cancel)
            except FetchCancelled:
                raise
            except YFError as exc:
                remaining = cfg.max_attempts - attempt - 1
                if remaining <= 0 or not cfg.retryable(exc):
                    if attempt:
                        logger.bind(op=label, kind=exc.kind.value).warning(
                            "{} giving up after {} attempt(s): {}",
                            label,
                            attempt + 1,
                            exc,
                        )
                    raise
                retry_after = exc.retry_after if isinstance(exc, StatusError) else None
                wait = cfg.backoff.delay(attempt, retry_after)
                logger.bind(op=label, kind=exc.kind.value).warning(
                    "{} attempt {}/{} failed ({}); retrying in {:.2f}s",
                    label,
                    attempt + 1,
                    cfg.max_attempts,
                    exc,
                    wait,
                )
                await _race(self._sleep(wait), cancel)
                attempt += 1


__all__ = [
    "RetryConfig",
    "RetryExecutor",
    "RetryPredicate",
    "is_retryable",
    "retry_on_status",
]
