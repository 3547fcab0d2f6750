"""Company and fund profiles, API first with an HTML page as the second source.

Parsing the quote page is left to a caller-supplied extractor; the library only
fetches the page and routes it through the same cache, retry and fallback path.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from yfkit.core.exceptions import ConfigError, DataError
from yfkit.core.models import CacheMode, RequestKey, SourcePreference, TtlClass
from yfkit.dal.retry import RetryConfig
from yfkit.utils.http import decode_json

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from yfkit.dal.client import YahooClient

PROFILE_ENDPOINT = "profile"
_MODULES = "assetProfile,quoteType,fundProfile"


@dataclass(slots=True)
class Profile:
    symbol: str
    kind: str
    name: str
    sector: Optional[str] = None
    industry: Optional[str] = None
    website: Optional[str] = None
    summary: Optional[str] = None
    country: Optional[str] = None
    family: Optional[str] = None
    legal_type: Optional[str] = None
    source: str = "api"
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


ScrapeExtractor = Callable[[str, str], Profile]


def no_scrape_extractor(html: str, symbol: str) -> Profile:
    raise DataError(f"profile: no scrape extractor configured for {symbol}")


def parse_profile(body: bytes, symbol: str) -> Profile:
    """Map a quoteSummary body (assetProfile/fundProfile/quoteType) onto ``Profile``."""
    payload = decode_json(body, what="quoteSummary")
    summary = payload.get("quoteSummary") if isinstance(payload, dict) else None
    if not isinstance(summary, dict):
        raise DataError("quoteSummary: missing quoteSummary node")
    if summary.get("error"):
        raise DataError(f"quoteSummary error: {summary['error']}")
    results = summary.get("result") or []
    if not results:
        raise DataError("quoteSummary: empty result")
    first = results[0] or {}

    quote_type = first.get("quoteType") or {}
    kind = str(quote_type.get("quoteType") or "").upper()
    name = quote_type.get("longName") or quote_type.get("shortName") or symbol

    if kind == "EQUITY":
        asset = first.get("assetProfile")
        if not asset:
            raise DataError("quoteSummary: assetProfile missing")
        return Profile(
            symbol=symbol,
            kind=kind,
            name=name,
            sector=asset.get("sector"),
            industry=asset.get("industry"),
            website=asset.get("website"),
            summary=asset.get("longBusinessSummary"),
            country=asset.get("country"),
            raw=first,
        )
    if kind == "ETF":
        fund = first.get("fundProfile")
        if not fund:
            raise DataError("quoteSummary: fundProfile missing")
        return Profile(
            symbol=symbol,
            kind=kind,
            name=name,
            family=fund.get("family"),
            legal_type=fund.get("legalType"),
            raw=first,
        )
    raise DataError(f"quoteSummary: unsupported quoteType {kind or '<none>'}")


async def load_profile(
    client: "YahooClient",
    symbol: str,
    *,
    preference: Optional[SourcePreference] = None,
    scrape_extractor: Optional[ScrapeExtractor] = None,
    cache_mode: CacheMode = CacheMode.USE,
    retry: Optional[RetryConfig] = None,
    cancel: Optional[asyncio.Event] = None,
) -> Profile:
    key = RequestKey.build(PROFILE_ENDPOINT, symbol)
    if not key.symbols:
        raise ConfigError("profile requires a symbol")
    sym = key.symbols[0]
    http = client.settings.http
    extractor = scrape_extractor or no_scrape_extractor

    async def _api() -> Profile:
        body = await client.transport.send_request(
            http.base_quote_api + sym, [("modules", _MODULES)]
        )
        return parse_profile(body, sym)

    async def _scrape() -> Profile:
        body = await client.transport.send_request(
            http.base_quote + sym, accept="text/html"
        )
        profile = extractor(body.decode("utf-8", errors="replace"), sym)
        profile.source = "scrape"
        return profile

    return await client.fetch(
        key,
        cache_mode,
        retry,
        api=_api,
        scrape=_scrape,
        preference=preference or client.settings.source.preference,
        ttl_class=TtlClass.PROFILE,
        cancel=cancel,
    )


__all__ = [
    "PROFILE_ENDPOINT",
    "Profile",
    "ScrapeExtractor",
    "load_profile",
    "no_scrape_extractor",
    "parse_profile",
]
