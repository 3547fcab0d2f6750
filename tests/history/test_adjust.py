from __future__ import annotations

import math

import pytest

from yfkit.core.models import Dividend, Split
from yfkit.history.adjust import (
    RawBars,
    adjust_history,
    cumulative_split_after,
    price_factor_for_row,
)


def _bars(**overrides) -> RawBars:
    base = dict(
        timestamps=[1, 2, 3],
        open=[100.0, 52.0, 54.0],
        high=[102.0, 53.0, 55.0],
        low=[99.0, 51.0, 53.0],
        close=[101.0, 52.5, 54.5],
        volume=[1_000, 2_000, 3_000],
    )
    base.update(overrides)
    return RawBars(**base)


def test_null_bar_dropped_by_default():
    raw = RawBars(
        timestamps=[1, 2],
        open=[100.0, None],
        high=[101.0, 101.0],
        low=[99.0, 99.0],
        close=[100.5, None],
        volume=[10, 20],
    )

    response = adjust_history(raw, [], keepna=False)

    assert [c.ts for c in response.candles] == [1]


def test_keepna_retains_null_bar_as_nan_with_volume():
    raw = RawBars(
        timestamps=[1, 2],
        open=[100.0, None],
        high=[101.0, 101.0],
        low=[99.0, 99.0],
        close=[100.5, None],
        volume=[10, 20],
    )

    response = adjust_history(raw, [], keepna=True)

    assert len(response.candles) == 2
    second = response.candles[1]
    assert math.isnan(second.open) and math.isnan(second.close)
    assert not second.has_prices
    assert second.volume == 20
    assert math.isnan(response.raw_close[1])


def test_missing_volume_never_drops_a_bar():
    response = adjust_history(_bars(volume=[None, 5, None]), [])

    assert [c.volume for c in response.candles] == [None, 5, None]


def test_nan_price_counts_as_missing():
    response = adjust_history(_bars(close=[101.0, float("nan"), 54.5]), [])

    assert [c.ts for c in response.candles] == [1, 3]


def test_cumulative_split_factor_is_strictly_after():
    assert cumulative_split_after([1, 2, 3], [(2, 2.0)]) == [2.0, 1.0, 1.0]


def test_split_at_bar_timestamp_does_not_adjust_that_bar():
    response = adjust_history(_bars(), [Split(ts=2, numerator=2, denominator=1)])

    assert response.candles[1].close == pytest.approx(52.5)
    assert response.candles[2].close == pytest.approx(54.5)


def test_multiple_splits_multiply():
    events = [(2, 2.0), (3, 3.0)]

    assert cumulative_split_after([1, 2, 3, 4], events) == [6.0, 3.0, 1.0, 1.0]


def test_split_back_adjustment_halves_earlier_prices():
    response = adjust_history(_bars(), [Split(ts=2, numerator=2, denominator=1)], adjust=True)

    first = response.candles[0]
    assert first.close == pytest.approx(101.0 / 2)
    assert first.open == pytest.approx(50.0)
    assert first.high == pytest.approx(51.0)
    assert first.low == pytest.approx(49.5)
    assert first.volume == 1_000
    assert response.adjusted is True
    assert response.raw_close == [101.0, 52.5, 54.5]


def test_adjclose_ratio_takes_precedence():
    raw = _bars(adjclose=[90.9, 52.5, 54.5])

    response = adjust_history(raw, [Split(ts=2, numerator=2, denominator=1)])

    assert response.candles[0].close == pytest.approx(90.9)
    assert response.candles[0].open == pytest.approx(100.0 * 90.9 / 101.0)


def test_price_factor_fallbacks():
    assert price_factor_for_row(50.0, 100.0, 4.0) == pytest.approx(0.5)
    assert price_factor_for_row(50.0, 0.0, 4.0) == pytest.approx(0.25)
    assert price_factor_for_row(None, 100.0, 2.0) == pytest.approx(0.5)
    assert price_factor_for_row(None, 100.0, 0.0) == pytest.approx(1e12)


def test_unadjusted_path_emits_raw_values():
    response = adjust_history(_bars(), [Split(ts=2, numerator=2, denominator=1)], adjust=False)

    assert [c.close for c in response.candles] == [101.0, 52.5, 54.5]
    assert response.adjusted is False


def test_actions_pass_through_unchanged():
    actions = [Dividend(ts=3, amount=0.24), Split(ts=2, numerator=2, denominator=1)]

    response = adjust_history(_bars(), actions)

    assert response.actions == actions
    assert response.dividends() == [Dividend(ts=3, amount=0.24)]


def test_unsorted_actions_are_handled():
    sorted_actions = [Split(ts=2, numerator=2, denominator=1), Split(ts=3, numerator=3, denominator=1)]

    forward = adjust_history(_bars(), sorted_actions)
    backward = adjust_history(_bars(), list(reversed(sorted_actions)))

    assert [c.close for c in forward.candles] == [c.close for c in backward.candles]
    assert forward.candles[0].close == pytest.approx(101.0 / 6)


def test_unsorted_bars_keep_input_order_without_error():
    raw = _bars(timestamps=[3, 1, 2])

    response = adjust_history(raw, [Split(ts=2, numerator=2, denominator=1)])

    assert [c.ts for c in response.candles] == [3, 1, 2]


def test_zero_denominator_split_is_neutral():
    split = Split(ts=2, numerator=2, denominator=0)

    response = adjust_history(_bars(), [split])

    assert split.ratio == 1.0
    assert response.candles[0].close == pytest.approx(101.0)


def test_short_arrays_are_padded_as_missing():
    raw = RawBars(
        timestamps=[1, 2],
        open=[1.0, 2.0],
        high=[1.0, 2.0],
        low=[1.0, 2.0],
        close=[1.0],
        volume=[],
    )

    response = adjust_history(raw, [])

    assert [c.ts for c in response.candles] == [1]
    assert response.candles[0].volume is None
