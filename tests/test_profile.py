from __future__ import annotations

import json

import pytest

from yfkit.core.exceptions import DataError, StatusError
from yfkit.core.models import SourcePreference
from yfkit.dal.backoff import BackoffPolicy
from yfkit.dal.client import YahooClient
from yfkit.dal.retry import RetryConfig
from yfkit.profile import Profile, parse_profile


def summary(**result) -> bytes:
    return json.dumps({"quoteSummary": {"result": [result], "error": None}}).encode()


EQUITY = summary(
    quoteType={"quoteType": "EQUITY", "longName": "Apple Inc."},
    assetProfile={
        "sector": "Technology",
        "industry": "Consumer Electronics",
        "website": "https://www.apple.com",
        "country": "United States",
        "longBusinessSummary": "Designs phones.",
    },
)


@pytest.fixture
def client(settings_factory, fake_transport):
    return YahooClient(
        settings_factory(),
        transport=fake_transport,
        retry=RetryConfig(max_attempts=1, backoff=BackoffPolicy(base_delay=0.0)),
    )


def test_parse_equity_profile():
    profile = parse_profile(EQUITY, "AAPL")

    assert profile.kind == "EQUITY"
    assert profile.name == "Apple Inc."
    assert profile.sector == "Technology"
    assert profile.source == "api"


def test_parse_fund_profile():
    body = summary(
        quoteType={"quoteType": "ETF", "shortName": "SPDR S&P 500"},
        fundProfile={"family": "SPDR State Street", "legalType": "Exchange Traded Fund"},
    )

    profile = parse_profile(body, "SPY")

    assert (profile.kind, profile.name, profile.family) == ("ETF", "SPDR S&P 500", "SPDR State Street")


def test_unsupported_or_incomplete_profiles():
    with pytest.raises(DataError):
        parse_profile(summary(quoteType={"quoteType": "CRYPTOCURRENCY"}), "BTC-USD")
    with pytest.raises(DataError):
        parse_profile(summary(quoteType={"quoteType": "EQUITY"}), "AAPL")


@pytest.mark.anyio("asyncio")
async def test_api_success_skips_scrape(client, fake_transport):
    fake_transport.route("/quoteSummary/AAPL", EQUITY)

    profile = await client.profile("aapl")

    assert profile.name == "Apple Inc."
    assert fake_transport.calls[0][1] == [("modules", "assetProfile,quoteType,fundProfile")]
    assert fake_transport.calls_to("finance.yahoo.com/quote/") == 0


@pytest.mark.anyio("asyncio")
async def test_api_failure_falls_back_to_scrape_extractor(client, fake_transport):
    fake_transport.route("/quoteSummary/AAPL", StatusError(401, "quoteSummary"))
    fake_transport.route("finance.yahoo.com/quote/AAPL", b"<html><h1>Apple Inc.</h1></html>")
    seen = []

    def extractor(html: str, symbol: str) -> Profile:
        seen.append(html)
        return Profile(symbol=symbol, kind="EQUITY", name="Apple Inc. (page)")

    profile = await client.profile("AAPL", scrape_extractor=extractor)

    assert profile.name == "Apple Inc. (page)"
    assert profile.source == "scrape"
    assert seen == ["<html><h1>Apple Inc.</h1></html>"]
    assert fake_transport.calls[-1][2] == "text/html"


@pytest.mark.anyio("asyncio")
async def test_scrape_without_extractor_surfaces_data_error(client, fake_transport):
    fake_transport.route("/quoteSummary/AAPL", EQUITY)
    fake_transport.route("finance.yahoo.com/quote/AAPL", b"<html></html>")

    with pytest.raises(DataError):
        await client.profile("AAPL", preference=SourcePreference.SCRAPE_ONLY)
