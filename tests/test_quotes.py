from __future__ import annotations

import json

import pytest

from yfkit.core.exceptions import ConfigError, DataError, DecodeError
from yfkit.core.models import MarketState
from yfkit.dal.client import YahooClient
from yfkit.quotes import parse_quotes


def body(*nodes) -> bytes:
    return json.dumps({"quoteResponse": {"result": list(nodes), "error": None}}).encode()


AAPL = {
    "symbol": "AAPL",
    "regularMarketPrice": 187.5,
    "regularMarketPreviousClose": 185.0,
    "regularMarketVolume": 41_000_000,
    "regularMarketTime": 1_700_000_000,
    "currency": "USD",
    "marketState": "POSTPOST",
}
MSFT = {"symbol": "MSFT", "regularMarketPrice": {"raw": 370.1, "fmt": "370.10"}}


def test_parse_quotes_in_request_order():
    quotes = parse_quotes(body(AAPL, MSFT), ["MSFT", "AAPL"])

    assert [q.symbol for q in quotes] == ["MSFT", "AAPL"]
    assert quotes[0].price == 370.1
    aapl = quotes[1]
    assert (aapl.price, aapl.previous_close, aapl.volume) == (187.5, 185.0, 41_000_000)
    assert aapl.market_state is MarketState.POST


def test_missing_symbol_is_data_error():
    with pytest.raises(DataError):
        parse_quotes(body(AAPL), ["AAPL", "MSFT"])


def test_malformed_payloads():
    with pytest.raises(DecodeError):
        parse_quotes(b"{", ["AAPL"])
    with pytest.raises(DataError):
        parse_quotes(b"{}", ["AAPL"])


@pytest.mark.anyio("asyncio")
async def test_client_quotes_cache_by_symbol_set(settings_factory, fake_transport):
    fake_transport.route("/v7/finance/quote", body(AAPL, MSFT))
    client = YahooClient(settings_factory(), transport=fake_transport)

    first = await client.quotes(["aapl", "msft"])
    second = await client.quotes(["AAPL", "MSFT"])

    assert first == second
    assert fake_transport.calls == [
        (client.settings.http.base_quote_v7, [("symbols", "AAPL,MSFT")], "application/json")
    ]


@pytest.mark.anyio("asyncio")
async def test_empty_symbol_list_is_rejected(settings_factory, fake_transport):
    client = YahooClient(settings_factory(), transport=fake_transport)

    with pytest.raises(ConfigError):
        await client.quotes([])
