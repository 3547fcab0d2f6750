from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, Union

from loguru import logger

from yfkit.core.exceptions import ConfigError
from yfkit.core.models import (
    CacheMode,
    Quote,
    RequestKey,
    SourcePreference,
    StreamUpdate,
    TtlClass,
)
from yfkit.dal.cache import RequestCache
from yfkit.dal.fallback import SourceFallbackController
from yfkit.dal.retry import RetryConfig, RetryExecutor
from yfkit.settings import Settings, get_settings
from yfkit.utils.http import HttpTransport, RequestsTransport

Path = Callable[[], Awaitable[Any]]


def update_from_quote(quote: Quote) -> StreamUpdate:
    """Polled quote as a stream update; no ``market_time`` leaves ``timestamp`` unset."""
    ts = None
    if quote.market_time:
        ts = datetime.fromtimestamp(quote.market_time, tz=timezone.utc)
    return StreamUpdate(
        symbol=quote.symbol,
        last_price=quote.price,
        timestamp=ts,
        market_state=quote.market_state,
        volume=quote.volume,
        previous_close=quote.previous_close,
        currency=quote.currency,
    )


class YahooClient:
    """Entry point that owns one request cache, retry executor and fallback controller.

    Every instance is independent; nothing is shared at module level, so tests
    can build as many clients as they need with fake transports.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[HttpTransport] = None,
        stream_transport: Any = None,
        retry: Optional[RetryConfig] = None,
        cache: Optional[RequestCache] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.transport: HttpTransport = transport or RequestsTransport(self.settings.http)
        self.stream_transport = stream_transport
        self.retry = retry or RetryConfig.from_settings(self.settings.retry)
        self.cache = cache or RequestCache(self.settings.cache.ttl_by_class)
        self.executor = RetryExecutor(self.retry)
        self.fallback = SourceFallbackController(self.executor)

    # ------------------------------------------------------------------
    # Core fetch path
    # ------------------------------------------------------------------

    def url_for(self, key: RequestKey) -> Tuple[str, List[Tuple[str, str]]]:
        """Default API URL and query for ``key`` on the known endpoints."""
        http = self.settings.http
        query = key.query()
        if key.endpoint == "chart" and len(key.symbols) == 1:
            return http.base_chart + key.symbols[0], query
        if key.endpoint == "quote":
            return http.base_quote_v7, [("symbols", ",".join(key.symbols))] + query
        if key.endpoint == "quoteSummary" and len(key.symbols) == 1:
            return http.base_quote_api + key.symbols[0], query
        if key.endpoint == "quote_page" and len(key.symbols) == 1:
            return http.base_quote + key.symbols[0], query
        raise ConfigError(f"no default URL for endpoint {key.endpoint!r}")

    def _raw_path(self, key: RequestKey) -> Path:
        url, query = self.url_for(key)
        accept = "text/html" if key.endpoint == "quote_page" else "application/json"

        async def _get() -> bytes:
            return await self.transport.send_request(url, query, accept=accept)

        return _get

    async def fetch(
        self,
        key: RequestKey,
        cache_mode: CacheMode = CacheMode.USE,
        retry_override: Optional[RetryConfig] = None,
        *,
        api: Optional[Path] = None,
        scrape: Optional[Path] = None,
        preference: Optional[SourcePreference] = None,
        ttl_class: TtlClass = TtlClass.DEFAULT,
        cancel: Optional[asyncio.Event] = None,
    ) -> Any:
        """Cache, singleflight, fallback and retry around one logical request.

        Without explicit paths the raw response bytes of the endpoint's default
        URL are returned. With only one path supplied and no preference, that
        path runs alone; otherwise the configured preference decides the order.
        """
        if api is None and scrape is None:
            api = self._raw_path(key)
        if preference is None:
            if api is not None and scrape is not None:
                preference = self.settings.source.preference
            elif api is not None:
                preference = SourcePreference.API_ONLY
            else:
                preference = SourcePreference.SCRAPE_ONLY

        label = f"{key.endpoint}:{','.join(key.symbols)}"

        async def _load() -> Any:
            return await self.fallback.run(
                api, scrape, preference, retry_override, cancel=cancel, label=label
            )

        return await self.cache.get_or_fetch(key, _load, mode=cache_mode, ttl_class=ttl_class)

    # ------------------------------------------------------------------
    # Builders and collaborators
    # ------------------------------------------------------------------

    def history(self, symbol: str):
        from yfkit.history.builder import HistoryBuilder

        return HistoryBuilder(self, symbol)

    async def quotes(
        self,
        symbols: Union[str, Iterable[str]],
        *,
        cache_mode: CacheMode = CacheMode.USE,
        retry: Optional[RetryConfig] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> List[Quote]:
        from yfkit.quotes import fetch_quotes

        return await fetch_quotes(
            self, symbols, cache_mode=cache_mode, retry=retry, cancel=cancel
        )

    async def profile(self, symbol: str, **kwargs: Any):
        from yfkit.profile import load_profile

        return await load_profile(self, symbol, **kwargs)

    async def poll_updates(self, symbols: List[str]) -> List[StreamUpdate]:
        quotes = await self.quotes(symbols, cache_mode=CacheMode.BYPASS)
        return [update_from_quote(q) for q in quotes]

    async def stream(self, symbols: Union[str, Iterable[str]], config=None):
        """Start a live quote stream; polling falls back to ``quotes()``."""
        from yfkit.stream.pipeline import StreamConfig, WebsocketTransport, start_stream

        cfg = config or StreamConfig.from_settings(self.settings.stream)
        transport = self.stream_transport or WebsocketTransport(self.settings.http)
        logger.debug("starting stream method={} symbols={}", cfg.method.value, symbols)
        return await start_stream(
            symbols, cfg, transport=transport, poller=self.poll_updates
        )

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()


__all__ = ["YahooClient", "update_from_quote"]
