"""Historical bars: chart decoding, corporate actions and back-adjustment."""

from .actions import extract_actions
from .adjust import RawBars, adjust_history, cumulative_split_after, price_factor_for_row

__all__ = [
    "HistoryBuilder",
    "RawBars",
    "adjust_history",
    "cumulative_split_after",
    "extract_actions",
    "price_factor_for_row",
]


def __getattr__(name: str):
    if name == "HistoryBuilder":
        from .builder import HistoryBuilder as _HistoryBuilder

        return _HistoryBuilder
    raise AttributeError(f"module {__name__} has no attribute {name!r}")
