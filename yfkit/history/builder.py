from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Union

from loguru import logger

from yfkit.core.exceptions import ConfigError, DataError
from yfkit.core.models import (
    CacheMode,
    Candle,
    HistoryMeta,
    HistoryResponse,
    Interval,
    Range,
    RequestKey,
    SourcePreference,
    TtlClass,
)
from yfkit.dal.retry import RetryConfig
from yfkit.history.actions import extract_actions
from yfkit.history.adjust import RawBars, adjust_history
from yfkit.utils.http import decode_json

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from yfkit.dal.client import YahooClient

CHART_ENDPOINT = "chart"
_EVENTS = "div|split|capitalGains"


@dataclass(frozen=True, slots=True)
class RawChart:
    """Decoded ``/v8/finance/chart`` result; this is what the cache holds."""

    bars: RawBars
    events: Optional[Dict[str, Any]] = None
    meta: Optional[HistoryMeta] = None


def _column(block: Mapping[str, Any], name: str) -> List[Any]:
    values = block.get(name)
    return list(values) if isinstance(values, list) else []


def decode_chart(body: Union[bytes, str]) -> RawChart:
    """Parse a chart body; structural gaps raise ``DataError``."""
    payload = decode_json(body, what="chart")
    chart = payload.get("chart") if isinstance(payload, dict) else None
    if not isinstance(chart, dict):
        raise DataError("chart: missing chart node")

    error = chart.get("error")
    if error:
        code = error.get("code", "?") if isinstance(error, dict) else "?"
        description = error.get("description", "") if isinstance(error, dict) else str(error)
        raise DataError(f"chart error: {code} - {description}")

    results = chart.get("result")
    if not results:
        raise DataError("chart: empty result")
    first = results[0] or {}

    indicators = first.get("indicators") or {}
    quotes = indicators.get("quote") or []
    if not quotes:
        raise DataError("chart: missing quote block")
    quote = quotes[0] or {}

    adj_blocks = indicators.get("adjclose") or []
    adjclose = _column(adj_blocks[0] or {}, "adjclose") if adj_blocks else None

    bars = RawBars(
        timestamps=[int(ts) for ts in first.get("timestamp") or []],
        open=_column(quote, "open"),
        high=_column(quote, "high"),
        low=_column(quote, "low"),
        close=_column(quote, "close"),
        volume=_column(quote, "volume"),
        adjclose=adjclose,
    )

    meta_node = first.get("meta")
    meta = None
    if isinstance(meta_node, dict):
        meta = HistoryMeta(
            timezone=meta_node.get("exchangeTimezoneName") or meta_node.get("timezone"),
            gmtoffset=meta_node.get("gmtoffset"),
        )
    events = first.get("events") if isinstance(first.get("events"), dict) else None
    return RawChart(bars=bars, events=events, meta=meta)


def _epoch(value: Union[datetime, int, float]) -> int:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    return int(value)


class HistoryBuilder:
    """Chainable request for one symbol's OHLCV history.

    Defaults: six months of daily bars, adjusted, with actions and without
    pre/post-market bars.
    """

    def __init__(self, client: "YahooClient", symbol: str) -> None:
        if not symbol or not symbol.strip():
            raise ConfigError("history requires a symbol")
        self._client = client
        self.symbol = symbol.strip().upper()
        self._range: Optional[Range] = Range.M6
        self._period: Optional[Tuple[int, int]] = None
        self._interval = Interval.D1
        self._auto_adjust = True
        self._prepost = False
        self._actions = True
        self._keepna = False
        self._cache_mode = CacheMode.USE
        self._retry: Optional[RetryConfig] = None

    def range(self, value: Union[Range, str]) -> "HistoryBuilder":
        self._period = None
        self._range = Range(value)
        return self

    def between(
        self, start: Union[datetime, int, float], end: Union[datetime, int, float]
    ) -> "HistoryBuilder":
        self._range = None
        self._period = (_epoch(start), _epoch(end))
        return self

    def interval(self, value: Union[Interval, str]) -> "HistoryBuilder":
        self._interval = Interval(value)
        return self

    def auto_adjust(self, yes: bool = True) -> "HistoryBuilder":
        self._auto_adjust = bool(yes)
        return self

    def prepost(self, yes: bool = True) -> "HistoryBuilder":
        self._prepost = bool(yes)
        return self

    def actions(self, yes: bool = True) -> "HistoryBuilder":
        self._actions = bool(yes)
        return self

    def keepna(self, yes: bool = True) -> "HistoryBuilder":
        self._keepna = bool(yes)
        return self

    def cache_mode(self, mode: CacheMode) -> "HistoryBuilder":
        self._cache_mode = CacheMode(mode)
        return self

    def retry_policy(self, config: Optional[RetryConfig]) -> "HistoryBuilder":
        self._retry = config
        return self

    def params(self) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = []
        if self._period is not None:
            start, end = self._period
            if start >= end:
                raise ConfigError(f"invalid period: start {start} is not before end {end}")
            params += [("period1", str(start)), ("period2", str(end))]
        elif self._range is not None:
            params.append(("range", self._range.value))
        else:
            raise ConfigError("history requires a range or a period")
        params.append(("interval", self._interval.value))
        if self._actions:
            params.append(("events", _EVENTS))
        params.append(("includePrePost", "true" if self._prepost else "false"))
        return params

    def request_key(self) -> RequestKey:
        return RequestKey.build(CHART_ENDPOINT, self.symbol, self.params())

    async def _load(self, cancel: Optional[asyncio.Event]) -> RawChart:
        key = self.request_key()
        url = self._client.settings.http.base_chart + self.symbol

        async def _api() -> RawChart:
            body = await self._client.transport.send_request(url, key.query())
            return decode_chart(body)

        return await self._client.fetch(
            key,
            self._cache_mode,
            self._retry,
            api=_api,
            preference=SourcePreference.API_ONLY,
            ttl_class=TtlClass.HISTORY,
            cancel=cancel,
        )

    async def fetch_full(self, *, cancel: Optional[asyncio.Event] = None) -> HistoryResponse:
        raw = await self._load(cancel)
        actions, _ = extract_actions(raw.events if self._actions else None)
        response = adjust_history(
            raw.bars,
            actions,
            keepna=self._keepna,
            adjust=self._auto_adjust,
            meta=raw.meta,
        )
        logger.debug(
            "history symbol={} bars_in={} bars_out={} actions={} adjusted={}",
            self.symbol,
            len(raw.bars),
            len(response.candles),
            len(actions),
            response.adjusted,
        )
        return response

    async def fetch(self, *, cancel: Optional[asyncio.Event] = None) -> List[Candle]:
        return (await self.fetch_full(cancel=cancel)).candles


__all__ = ["CHART_ENDPOINT", "HistoryBuilder", "RawChart", "decode_chart"]
