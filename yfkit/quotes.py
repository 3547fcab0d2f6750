from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

from yfkit.core.exceptions import ConfigError, DataError
from yfkit.core.models import CacheMode, MarketState, Quote, RequestKey, SourcePreference, TtlClass
from yfkit.dal.retry import RetryConfig
from yfkit.utils.http import decode_json

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from yfkit.dal.client import YahooClient

QUOTE_ENDPOINT = "quote"


def _num(node: Dict[str, Any], key: str) -> Optional[float]:
    value = node.get(key)
    if isinstance(value, dict):
        # some responses wrap numbers as {"raw": 1.0, "fmt": "1.00"}
        value = value.get("raw")
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int(node: Dict[str, Any], key: str) -> Optional[int]:
    value = _num(node, key)
    return int(value) if value is not None else None


def quote_from_node(node: Dict[str, Any]) -> Quote:
    return Quote(
        symbol=str(node.get("symbol") or "").upper(),
        price=_num(node, "regularMarketPrice"),
        previous_close=_num(node, "regularMarketPreviousClose"),
        currency=node.get("currency"),
        volume=_int(node, "regularMarketVolume"),
        market_time=_int(node, "regularMarketTime"),
        market_state=MarketState.from_provider(node.get("marketState")),
        raw=node,
    )


def parse_quotes(body: Union[bytes, str], symbols: Iterable[str]) -> List[Quote]:
    """Decode a v7 quote body, in request order; a missing symbol is a ``DataError``."""
    payload = decode_json(body, what="quote")
    response = payload.get("quoteResponse") if isinstance(payload, dict) else None
    if not isinstance(response, dict) or response.get("result") is None:
        raise DataError("quote: missing quoteResponse.result")

    by_symbol: Dict[str, Quote] = {}
    for node in response["result"]:
        if isinstance(node, dict) and node.get("symbol"):
            quote = quote_from_node(node)
            by_symbol[quote.symbol] = quote

    out: List[Quote] = []
    for symbol in symbols:
        quote = by_symbol.get(symbol)
        if quote is None:
            raise DataError(f"quote: no result for {symbol}")
        out.append(quote)
    return out


async def fetch_quotes(
    client: "YahooClient",
    symbols: Union[str, Iterable[str]],
    *,
    cache_mode: CacheMode = CacheMode.USE,
    retry: Optional[RetryConfig] = None,
    cancel: Optional[asyncio.Event] = None,
) -> List[Quote]:
    key = RequestKey.build(QUOTE_ENDPOINT, symbols)
    if not key.symbols:
        raise ConfigError("quotes require at least one symbol")
    query = [("symbols", ",".join(key.symbols))]

    async def _api() -> List[Quote]:
        body = await client.transport.send_request(client.settings.http.base_quote_v7, query)
        return parse_quotes(body, key.symbols)

    return await client.fetch(
        key,
        cache_mode,
        retry,
        api=_api,
        preference=SourcePreference.API_ONLY,
        ttl_class=TtlClass.QUOTE,
        cancel=cancel,
    )


__all__ = ["QUOTE_ENDPOINT", "fetch_quotes", "parse_quotes", "quote_from_node"]
