"""
ROE / PnL calculator tests
"""
import math

import pytest

from scalper.positions.roe import (
    apply_price,
    calculate_pnl,
    calculate_roe,
    roe_to_price_offset,
)
from scalper.types import Side


def test_long_profit(make_position):
    """Long marked above entry"""
    position = apply_price(make_position(), 110)

    assert position.unrealized_pnl == pytest.approx(10)
    assert position.unrealized_roe == pytest.approx(100)
    assert position.current_price == 110


def test_long_loss(make_position):
    position = apply_price(make_position(), 95)

    assert position.unrealized_pnl == pytest.approx(-5)
    assert position.unrealized_roe == pytest.approx(-50)


def test_flat_price_is_zero(make_position):
    position = apply_price(make_position(), 100)

    assert position.unrealized_pnl == 0
    assert position.unrealized_roe == 0


def test_short_pnl_is_inverted(make_position):
    short = make_position(side=Side.SHORT)

    assert calculate_pnl(short, 90) == pytest.approx(10)
    assert calculate_pnl(short, 105) == pytest.approx(-5)


@pytest.mark.parametrize("margin", [0.0, -5.0])
def test_non_positive_margin_gives_zero_roe(make_position, margin):
    """ROE degrades to 0 instead of dividing by zero"""
    position = apply_price(make_position(margin_used=margin), 150)

    assert position.unrealized_roe == 0
    assert position.unrealized_pnl == pytest.approx(50)


def test_calculate_roe_never_non_finite():
    assert calculate_roe(math.inf, 10) == 0
    assert calculate_roe(5, math.nan) == 0


def test_negative_price_is_computed(make_position):
    position = apply_price(make_position(), -5)

    assert position.unrealized_pnl == pytest.approx(-105)
    assert math.isfinite(position.unrealized_roe)


def test_watermarks_are_monotonic(make_position):
    """High only rises, low only falls"""
    position = make_position()
    for price in [100.3, 100.8, 100.1, 99.7, 100.4, 99.9]:
        position = apply_price(position, price)
        assert position.lowest_roe <= position.unrealized_roe <= position.highest_roe

    assert position.highest_roe == pytest.approx(8)
    assert position.lowest_roe == pytest.approx(-3)


def test_apply_price_leaves_input_untouched(make_position):
    original = make_position()
    apply_price(original, 101)

    assert original.current_price == 100
    assert original.highest_roe == 0


def test_roe_offset_uses_margin_and_size(make_position):
    # 2.5% of $10 margin on 1 unit
    assert roe_to_price_offset(make_position(), 2.5) == pytest.approx(0.25)


def test_roe_offset_falls_back_to_leverage(make_position):
    position = make_position(margin_used=0.0, leverage=10)

    assert roe_to_price_offset(position, 2.5) == pytest.approx(100 * 0.025 / 10)


def test_roe_offset_without_margin_or_leverage(make_position):
    position = make_position(margin_used=0.0, leverage=0)

    assert roe_to_price_offset(position, 2.5) == 0
