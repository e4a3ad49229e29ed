"""
Protective-stop state: trailing stop, profit lock and peak-reversal protection
"""
from dataclasses import replace
from typing import Optional

from scalper.positions.roe import roe_to_price_offset
from scalper.types import Position, ScalperConfig


# Profit lock arms at this ROE and locks a stop worth this much ROE
PROFIT_LOCK_ARM_ROE = 0.3
PROFIT_LOCK_ROE = 0.2
# An armed lock also closes once ROE sinks below this
BREAK_EVEN_EXIT_ROE = 0.1

# Peak protection
PEAK_MIN_ROE = 0.3
PEAK_SMALL_TOLERANCE = 0.3
PEAK_LARGE_THRESHOLD = 1.0
PEAK_LARGE_MIN_TOLERANCE = 0.5
PEAK_GIVEBACK_RATIO = 0.25


def update_trailing(position: Position, config: ScalperConfig) -> Position:
    """
    Arm the trailing stop and ratchet it behind the current price.

    The stop for a long never moves down and for a short never moves up.
    """
    price = position.current_price
    armed = position.trailing_activated or position.unrealized_roe >= config.trailing_activation_roe
    if not armed:
        return position

    offset = roe_to_price_offset(position, config.trailing_distance_roe)
    candidate = price - offset if position.is_long else price + offset

    stop = position.trailing_stop_price
    if stop is None:
        stop = candidate
    elif position.is_long:
        stop = max(stop, candidate)
    else:
        stop = min(stop, candidate)

    return replace(position, trailing_activated=True, trailing_stop_price=stop)


def update_profit_lock(position: Position) -> Position:
    """Arm the profit lock once, while trailing is inactive"""
    if position.trailing_activated or position.profit_lock_activated:
        return position
    if position.unrealized_roe < PROFIT_LOCK_ARM_ROE:
        return position

    offset = roe_to_price_offset(position, PROFIT_LOCK_ROE)
    if position.is_long:
        lock_price = position.entry_price + offset
    else:
        lock_price = position.entry_price - offset
    return replace(position, profit_lock_activated=True, profit_lock_price=lock_price)


def update_protective_state(position: Position, config: ScalperConfig) -> Position:
    position = update_trailing(position, config)
    return update_profit_lock(position)


def _crossed(position: Position, stop: Optional[float]) -> bool:
    if stop is None:
        return False
    if position.is_long:
        return position.current_price <= stop
    return position.current_price >= stop


def trailing_stop_hit(position: Position) -> bool:
    return position.trailing_activated and _crossed(position, position.trailing_stop_price)


def profit_lock_hit(position: Position) -> bool:
    if position.trailing_activated or not position.profit_lock_activated:
        return False
    return _crossed(position, position.profit_lock_price)


def break_even_hit(position: Position) -> bool:
    if position.trailing_activated or not position.profit_lock_activated:
        return False
    return position.unrealized_roe < BREAK_EVEN_EXIT_ROE


def peak_tolerance(peak_roe: float) -> Optional[float]:
    """Allowed giveback from ``peak_roe``; ``None`` when the peak is too small to protect"""
    if peak_roe < PEAK_MIN_ROE:
        return None
    if peak_roe < PEAK_LARGE_THRESHOLD:
        return PEAK_SMALL_TOLERANCE
    return max(PEAK_LARGE_MIN_TOLERANCE, peak_roe * PEAK_GIVEBACK_RATIO)


def peak_protection_hit(position: Position) -> bool:
    tolerance = peak_tolerance(position.highest_roe)
    if tolerance is None:
        return False
    return position.highest_roe - position.unrealized_roe >= tolerance
