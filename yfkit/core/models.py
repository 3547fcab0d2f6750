from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Tuple, Union

if TYPE_CHECKING:  # pragma: no cover - typing helper
    import pandas as pd


class CacheMode(str, Enum):
    """How a fetch interacts with the request cache."""

    USE = "use"
    BYPASS = "bypass"
    REFRESH = "refresh"


class TtlClass(str, Enum):
    QUOTE = "quote"
    HISTORY = "history"
    PROFILE = "profile"
    DEFAULT = "default"


class SourcePreference(str, Enum):
    API_ONLY = "api_only"
    SCRAPE_ONLY = "scrape_only"
    API_THEN_SCRAPE = "api_then_scrape"
    SCRAPE_THEN_API = "scrape_then_api"


class MarketState(str, Enum):
    PRE = "pre"
    REGULAR = "regular"
    POST = "post"
    EXTENDED = "extended"
    CLOSED = "closed"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider(cls, value: Optional[str]) -> "MarketState":
        """Map the quote API ``marketState`` string (PRE, PREPRE, POSTPOST, ...)."""
        raw = (value or "").strip().upper()
        if raw in {"PRE", "PREPRE"}:
            return cls.PRE
        if raw == "REGULAR":
            return cls.REGULAR
        if raw in {"POST", "POSTPOST"}:
            return cls.POST
        if raw == "CLOSED":
            return cls.CLOSED
        return cls.UNKNOWN


class Range(str, Enum):
    D1 = "1d"
    D5 = "5d"
    M1 = "1mo"
    M3 = "3mo"
    M6 = "6mo"
    Y1 = "1y"
    Y2 = "2y"
    Y5 = "5y"
    Y10 = "10y"
    YTD = "ytd"
    MAX = "max"


class Interval(str, Enum):
    I1M = "1m"
    I2M = "2m"
    I5M = "5m"
    I15M = "15m"
    I30M = "30m"
    I60M = "60m"
    I90M = "90m"
    I1H = "1h"
    D1 = "1d"
    D5 = "5d"
    W1 = "1wk"
    MO1 = "1mo"
    MO3 = "3mo"


@dataclass(frozen=True, slots=True)
class RequestKey:
    """Identity of a logical request; the only cache-collision criterion."""

    endpoint: str
    symbols: Tuple[str, ...]
    params: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def build(
        cls,
        endpoint: str,
        symbols: Union[str, Iterable[str]],
        params: Optional[Iterable[Tuple[str, Any]]] = None,
    ) -> "RequestKey":
        if isinstance(symbols, str):
            symbols = [symbols]
        syms = tuple(s.strip().upper() for s in symbols if s and s.strip())
        pairs = tuple((str(k), str(v)) for k, v in (params or ()))
        return cls(endpoint=endpoint, symbols=syms, params=pairs)

    def query(self) -> List[Tuple[str, str]]:
        return list(self.params)


@dataclass(frozen=True, slots=True)
class Candle:
    """One OHLCV bar; OHLC are NaN for bars retained with ``keepna``."""

    ts: int
    open: float
    high: float
    low: float
    close: float
    volume: Optional[int] = None

    @property
    def has_prices(self) -> bool:
        return not any(math.isnan(v) for v in (self.open, self.high, self.low, self.close))

    def as_dict(self) -> dict:
        return {
            "timestamp": datetime.fromtimestamp(self.ts, tz=timezone.utc).isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True, slots=True)
class Dividend:
    ts: int
    amount: float


@dataclass(frozen=True, slots=True)
class Split:
    ts: int
    numerator: int
    denominator: int

    @property
    def ratio(self) -> float:
        if self.denominator == 0:
            return 1.0
        return self.numerator / self.denominator


@dataclass(frozen=True, slots=True)
class CapitalGain:
    ts: int
    gain: float


Action = Union[Dividend, Split, CapitalGain]


@dataclass(frozen=True, slots=True)
class HistoryMeta:
    timezone: Optional[str] = None
    gmtoffset: Optional[int] = None


@dataclass(slots=True)
class HistoryResponse:
    """Normalized bar series plus the corporate actions that shaped it."""

    candles: List[Candle]
    actions: List[Action]
    adjusted: bool
    meta: Optional[HistoryMeta] = None
    raw_close: Optional[List[float]] = None

    def dividends(self) -> List[Dividend]:
        return [a for a in self.actions if isinstance(a, Dividend)]

    def splits(self) -> List[Split]:
        return [a for a in self.actions if isinstance(a, Split)]

    def to_dataframe(self) -> "pd.DataFrame":
        import pandas as pd  # local import to keep module importable without pandas

        cols = ["open", "high", "low", "close", "volume"]
        if not self.candles:
            return pd.DataFrame(columns=cols)
        raw = [
            {
                "timestamp": pd.Timestamp(c.ts, unit="s", tz="UTC"),
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in self.candles
        ]
        df = pd.DataFrame(raw).set_index("timestamp")
        if self.meta and self.meta.timezone:
            try:
                df.index = df.index.tz_convert(self.meta.timezone)
            except (KeyError, ValueError, TypeError):
                # unknown zone names keep the UTC index
                pass
        df["volume"] = df["volume"].astype("Int64")
        return df[cols]


@dataclass(frozen=True, slots=True)
class StreamUpdate:
    """One live quote observation; equality is field-for-field.

    ``timestamp`` is ``None`` only for polled quotes that carry no market time.
    """

    symbol: str
    last_price: Optional[float]
    timestamp: Optional[datetime]
    market_state: MarketState = MarketState.UNKNOWN
    volume: Optional[int] = None
    previous_close: Optional[float] = None
    currency: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "last_price": self.last_price,
            "previous_close": self.previous_close,
            "currency": self.currency,
            "volume": self.volume,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "market_state": self.market_state.value,
        }


@dataclass(frozen=True, slots=True)
class CacheEntry:
    value: Any
    fetched_at: float
    ttl_class: TtlClass = TtlClass.DEFAULT


@dataclass(slots=True)
class Quote:
    """Subset of the v7 quote node the core needs for polling and diffing."""

    symbol: str
    price: Optional[float] = None
    previous_close: Optional[float] = None
    currency: Optional[str] = None
    volume: Optional[int] = None
    market_time: Optional[int] = None
    market_state: MarketState = MarketState.UNKNOWN
    raw: dict = field(default_factory=dict, compare=False, repr=False)


__all__ = [
    "Action",
    "CacheEntry",
    "CacheMode",
    "Candle",
    "CapitalGain",
    "Dividend",
    "HistoryMeta",
    "HistoryResponse",
    "Interval",
    "MarketState",
    "Quote",
    "Range",
    "RequestKey",
    "SourcePreference",
    "Split",
    "StreamUpdate",
    "TtlClass",
]
