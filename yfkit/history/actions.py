from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Optional, Tuple

from yfkit.core.models import Action, CapitalGain, Dividend, Split

SplitEvent = Tuple[int, float]


def _event_ts(key: Any, node: Mapping[str, Any]) -> int:
    try:
        return int(key)
    except (TypeError, ValueError):
        pass
    date = node.get("date")
    try:
        return int(date) if date is not None else 0
    except (TypeError, ValueError):
        return 0


def _as_count(value: Any) -> Optional[int]:
    """Split numerator/denominator: ints, integer-like floats or numeric strings."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        if not math.isfinite(value) or value < 0:
            return None
        rounded = round(value)
        return int(rounded) if abs(value - rounded) < 1e-9 else None
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = int(text)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


def _split_terms(node: Mapping[str, Any]) -> Tuple[int, int]:
    num = _as_count(node.get("numerator"))
    den = _as_count(node.get("denominator"))
    if num is not None and den is not None:
        return num, den
    ratio = node.get("splitRatio")
    if isinstance(ratio, str) and ratio:
        head, _, tail = ratio.partition("/")
        return _as_count(head) or 1, _as_count(tail) or 1
    return 1, 1


def _amount(node: Mapping[str, Any]) -> Optional[float]:
    raw = node.get("amount")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _action_ts(action: Action) -> int:
    return action.ts


def extract_actions(
    events: Optional[Mapping[str, Any]],
) -> Tuple[List[Action], List[SplitEvent]]:
    """Parse a chart ``events`` block into ts-ordered actions and split ratios.

    Entries are keyed by epoch seconds; the inner ``date`` is used when the key
    is not numeric. Dividends and capital gains without an amount are skipped.
    A split with a zero denominator keeps its action but contributes ratio 1.0.
    """
    actions: List[Action] = []
    split_events: List[SplitEvent] = []
    if not events:
        return actions, split_events

    dividends: Dict[str, Any] = events.get("dividends") or {}
    for key, node in dividends.items():
        amount = _amount(node or {})
        if amount is not None:
            actions.append(Dividend(ts=_event_ts(key, node or {}), amount=amount))

    gains: Dict[str, Any] = events.get("capitalGains") or {}
    for key, node in gains.items():
        gain = _amount(node or {})
        if gain is not None:
            actions.append(CapitalGain(ts=_event_ts(key, node or {}), gain=gain))

    splits: Dict[str, Any] = events.get("splits") or {}
    for key, node in splits.items():
        node = node or {}
        ts = _event_ts(key, node)
        num, den = _split_terms(node)
        split = Split(ts=ts, numerator=num, denominator=den)
        actions.append(split)
        split_events.append((ts, split.ratio))

    actions.sort(key=_action_ts)
    split_events.sort(key=lambda ev: ev[0])
    return actions, split_events


def split_events_from(actions: List[Action]) -> List[SplitEvent]:
    """Sorted ``(ts, ratio)`` pairs for the splits in an action list."""
    return sorted(
        ((a.ts, a.ratio) for a in actions if isinstance(a, Split)),
        key=lambda ev: ev[0],
    )


__all__ = ["SplitEvent", "extract_actions", "split_events_from"]
