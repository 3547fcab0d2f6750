from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from loguru import logger

from yfkit.core.exceptions import ConfigError, FetchCancelled, YFError
from yfkit.core.models import SourcePreference
from yfkit.dal.retry import RetryConfig, RetryExecutor

T = TypeVar("T")

Path = Callable[[], Awaitable[T]]


def _plan(
    preference: SourcePreference,
    api: Optional[Path[T]],
    scrape: Optional[Path[T]],
) -> List[Tuple[str, Path[T]]]:
    order = {
        SourcePreference.API_ONLY: ("api",),
        SourcePreference.SCRAPE_ONLY: ("scrape",),
        SourcePreference.API_THEN_SCRAPE: ("api", "scrape"),
        SourcePreference.SCRAPE_THEN_API: ("scrape", "api"),
    }[SourcePreference(preference)]
    paths = {"api": api, "scrape": scrape}
    missing = [name for name in order if paths[name] is None]
    if missing:
        raise ConfigError(
            f"source preference {SourcePreference(preference).value} needs a {missing[0]} path"
        )
    return [(name, paths[name]) for name in order]


class SourceFallbackController:
    """Runs the API and scrape paths in the order a preference dictates.

    Each path gets its own retry budget. Only the error of the last path tried
    reaches the caller; earlier ones are logged.
    """

    def __init__(self, executor: Optional[RetryExecutor] = None) -> None:
        self.executor = executor or RetryExecutor()

    async def run(
        self,
        api: Optional[Path[T]],
        scrape: Optional[Path[T]],
        preference: SourcePreference = SourcePreference.API_THEN_SCRAPE,
        retry: Optional[RetryConfig] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
        label: str = "fetch",
    ) -> T:
        plan = _plan(preference, api, scrape)
        last = len(plan) - 1
        for idx, (name, path) in enumerate(plan):
            try:
                return await self.executor.run(
                    path, retry, cancel=cancel, label=f"{label}:{name}"
                )
            except FetchCancelled:
                raise
            except YFError as exc:
                if idx == last:
                    raise
                logger.bind(op=label, source=name, kind=exc.kind.value).warning(
                    "{} {} path failed ({}); falling back to {}",
                    label,
                    name,
                    exc,
                    plan[idx + 1][0],
                )
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["SourceFallbackController"]
