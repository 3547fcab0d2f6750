from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from yfkit.core.exceptions import ConfigError, DataError, DecodeError
from yfkit.core.models import CacheMode, Dividend, Interval, Range, Split
from yfkit.dal.backoff import BackoffPolicy
from yfkit.dal.client import YahooClient
from yfkit.dal.retry import RetryConfig
from yfkit.history.builder import decode_chart


def chart_body(**overrides) -> bytes:
    result = {
        "meta": {
            "currency": "USD",
            "symbol": "AAPL",
            "exchangeTimezoneName": "America/New_York",
            "timezone": "EST",
            "gmtoffset": -18000,
        },
        "timestamp": [1_700_000_000, 1_700_086_400, 1_700_172_800],
        "indicators": {
            "quote": [
                {
                    "open": [100.0, None, 52.0],
                    "high": [102.0, None, 53.0],
                    "low": [99.0, None, 51.0],
                    "close": [101.0, None, 52.5],
                    "volume": [1_000, 1_500, 2_000],
                }
            ]
        },
        "events": {
            "splits": {
                "1700086400": {"date": 1_700_086_400, "numerator": 2, "denominator": 1}
            },
            "dividends": {"1700172800": {"date": 1_700_172_800, "amount": 0.24}},
        },
    }
    result.update(overrides)
    return json.dumps({"chart": {"result": [result], "error": None}}).encode()


@pytest.fixture
def client(settings_factory, fake_transport):
    return YahooClient(
        settings_factory(),
        transport=fake_transport,
        retry=RetryConfig(max_attempts=2, backoff=BackoffPolicy(base_delay=0.0)),
    )


def test_decode_chart_reads_columns_and_meta():
    raw = decode_chart(chart_body())

    assert raw.bars.timestamps == [1_700_000_000, 1_700_086_400, 1_700_172_800]
    assert raw.bars.close == [101.0, None, 52.5]
    assert raw.bars.adjclose is None
    assert raw.meta.timezone == "America/New_York"
    assert raw.meta.gmtoffset == -18000
    assert "splits" in raw.events


def test_decode_chart_errors():
    with pytest.raises(DecodeError):
        decode_chart(b"<html>")
    with pytest.raises(DataError):
        decode_chart(json.dumps({"chart": {"result": None, "error": {"code": "Not Found", "description": "No data"}}}))
    with pytest.raises(DataError):
        decode_chart(json.dumps({"chart": {"result": [{"indicators": {"quote": []}}]}}))


def test_default_params(client):
    builder = client.history("aapl")

    assert builder.params() == [
        ("range", "6mo"),
        ("interval", "1d"),
        ("events", "div|split|capitalGains"),
        ("includePrePost", "false"),
    ]


def test_between_replaces_range(client):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 2, 1, tzinfo=timezone.utc)

    params = client.history("AAPL").range(Range.Y1).between(start, end).interval(Interval.W1).actions(False).params()

    assert params == [
        ("period1", str(int(start.timestamp()))),
        ("period2", str(int(end.timestamp()))),
        ("interval", "1wk"),
        ("includePrePost", "false"),
    ]


@pytest.mark.anyio("asyncio")
async def test_inverted_period_is_rejected(client, fake_transport):
    builder = client.history("AAPL").between(2_000, 1_000)

    with pytest.raises(ConfigError):
        await builder.fetch()

    assert fake_transport.calls == []


def test_blank_symbol_is_rejected(client):
    with pytest.raises(ConfigError):
        client.history("  ")


@pytest.mark.anyio("asyncio")
async def test_fetch_full_adjusts_and_caches(client, fake_transport):
    fake_transport.route("/chart/AAPL", chart_body())

    response = await client.history("AAPL").fetch_full()

    assert [c.ts for c in response.candles] == [1_700_000_000, 1_700_172_800]
    assert response.candles[0].close == pytest.approx(50.5)
    assert response.candles[0].volume == 1_000
    assert response.candles[1].close == pytest.approx(52.5)
    assert response.actions == [
        Split(ts=1_700_086_400, numerator=2, denominator=1),
        Dividend(ts=1_700_172_800, amount=0.24),
    ]
    assert response.raw_close == [101.0, 52.5]
    assert response.meta.timezone == "America/New_York"

    await client.history("AAPL").fetch()
    assert fake_transport.calls_to("/chart/AAPL") == 1

    await client.history("AAPL").cache_mode(CacheMode.REFRESH).fetch()
    assert fake_transport.calls_to("/chart/AAPL") == 2


@pytest.mark.anyio("asyncio")
async def test_keepna_and_raw_prices(client, fake_transport):
    fake_transport.route("/chart/AAPL", chart_body())

    response = await client.history("AAPL").auto_adjust(False).keepna().fetch_full()

    assert len(response.candles) == 3
    assert response.adjusted is False
    assert response.candles[0].close == 101.0
    assert response.candles[1].volume == 1_500
    assert not response.candles[1].has_prices


@pytest.mark.anyio("asyncio")
async def test_to_dataframe_uses_exchange_timezone(client, fake_transport):
    fake_transport.route("/chart/AAPL", chart_body())

    df = (await client.history("AAPL").fetch_full()).to_dataframe()

    assert list(df.columns) == ["open", "high", "low", "close", "volume"]
    assert str(df.index.tz) == "America/New_York"
    assert df["volume"].tolist() == [1_000, 2_000]


@pytest.mark.anyio("asyncio")
async def test_malformed_chart_is_not_retried(client, fake_transport):
    fake_transport.route("/chart/AAPL", b"not json")

    with pytest.raises(DecodeError):
        await client.history("AAPL").fetch()

    assert fake_transport.calls_to("/chart/AAPL") == 1
