from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from yfkit.core.models import Action, Candle, HistoryMeta, HistoryResponse
from yfkit.history.actions import SplitEvent, split_events_from

_EPSILON = 1e-12
_NAN = float("nan")


@dataclass(slots=True)
class RawBars:
    """Parallel per-bar arrays as decoded from the chart payload.

    Absent values are ``None``; a NaN price is treated as absent. Arrays shorter
    than ``timestamps`` are padded with ``None``.
    """

    timestamps: List[int]
    open: List[Optional[float]] = field(default_factory=list)
    high: List[Optional[float]] = field(default_factory=list)
    low: List[Optional[float]] = field(default_factory=list)
    close: List[Optional[float]] = field(default_factory=list)
    volume: List[Optional[int]] = field(default_factory=list)
    adjclose: Optional[List[Optional[float]]] = None

    def __len__(self) -> int:
        return len(self.timestamps)


def _at(values: Optional[Sequence[Optional[float]]], idx: int) -> Optional[float]:
    if values is None or idx >= len(values):
        return None
    value = values[idx]
    if value is None:
        return None
    value = float(value)
    return None if math.isnan(value) else value


def _volume_at(values: Sequence[Optional[int]], idx: int) -> Optional[int]:
    if idx >= len(values) or values[idx] is None:
        return None
    try:
        return int(values[idx])
    except (TypeError, ValueError, OverflowError):
        return None


def cumulative_split_after(
    timestamps: Sequence[int], split_events: Sequence[SplitEvent]
) -> List[float]:
    """Per bar, the product of split ratios dated strictly after the bar.

    Walks bars from newest to oldest with a running product, so both inputs are
    expected in ascending order. Unsorted bars do not raise; each bar then picks
    up whatever the running product holds at that point of the scan.
    """
    out = [1.0] * len(timestamps)
    if not timestamps or not split_events:
        return out

    sp_idx = len(split_events)
    running = 1.0
    for i in range(len(timestamps) - 1, -1, -1):
        while sp_idx > 0 and split_events[sp_idx - 1][0] > timestamps[i]:
            sp_idx -= 1
            running *= split_events[sp_idx][1]
        out[i] = running
    return out


def price_factor_for_row(
    adjclose: Optional[float], close: Optional[float], cum_split: float
) -> float:
    if adjclose is not None and close is not None and close != 0.0:
        return adjclose / close
    return 1.0 / max(cum_split, _EPSILON)


def adjust_history(
    raw_bars: RawBars,
    actions: Sequence[Action],
    keepna: bool = False,
    adjust: bool = True,
    *,
    meta: Optional[HistoryMeta] = None,
) -> HistoryResponse:
    """Filter incomplete bars and optionally back-adjust prices for splits.

    Bars keep their input order and volume is reported as received. ``actions``
    is returned as given; split ratios are read from it in timestamp order.
    """
    split_events = split_events_from(list(actions))
    cum = cumulative_split_after(raw_bars.timestamps, split_events)

    candles: List[Candle] = []
    raw_close: List[float] = []
    for i, ts in enumerate(raw_bars.timestamps):
        o = _at(raw_bars.open, i)
        h = _at(raw_bars.high, i)
        lo = _at(raw_bars.low, i)
        c = _at(raw_bars.close, i)
        volume = _volume_at(raw_bars.volume, i)
        complete = None not in (o, h, lo, c)

        if not complete and not keepna:
            continue

        raw_close.append(c if c is not None else _NAN)
        if not complete:
            o = h = lo = c = None
        elif adjust:
            pf = price_factor_for_row(_at(raw_bars.adjclose, i), c, cum[i])
            o, h, lo, c = o * pf, h * pf, lo * pf, c * pf

        candles.append(
            Candle(
                ts=int(ts),
                open=_NAN if o is None else o,
                high=_NAN if h is None else h,
                low=_NAN if lo is None else lo,
                close=_NAN if c is None else c,
                volume=volume,
            )
        )

    return HistoryResponse(
        candles=candles,
        actions=list(actions),
        adjusted=adjust,
        meta=meta,
        raw_close=raw_close,
    )


__all__ = [
    "RawBars",
    "adjust_history",
    "cumulative_split_after",
    "price_factor_for_row",
]
