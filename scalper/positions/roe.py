"""
ROE / PnL arithmetic for leveraged positions
"""
import math
from dataclasses import replace
from typing import Tuple

from scalper.types import Position


def _finite(value: float, default: float = 0.0) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


def calculate_pnl(position: Position, price: float) -> float:
    """Unrealized PnL in quote currency at ``price``"""
    if position.is_long:
        pnl = (price - position.entry_price) * position.size
    else:
        pnl = (position.entry_price - price) * position.size
    return _finite(pnl)


def calculate_roe(pnl: float, margin: float) -> float:
    """ROE in percent; zero margin yields 0"""
    margin = _finite(margin)
    if margin <= 0:
        return 0.0
    return _finite(pnl / margin * 100)


def calculate_pnl_roe(position: Position, price: float) -> Tuple[float, float]:
    pnl = calculate_pnl(position, price)
    return pnl, calculate_roe(pnl, position.margin_used)


def apply_price(position: Position, price: float) -> Position:
    """
    Return a copy of ``position`` marked to ``price``.

    PnL, ROE and both watermarks are refreshed. The high watermark only
    rises and the low watermark only falls.
    """
    pnl, roe = calculate_pnl_roe(position, price)
    return replace(
        position,
        current_price=price,
        unrealized_pnl=pnl,
        unrealized_roe=roe,
        highest_roe=max(position.highest_roe, roe),
        lowest_roe=min(position.lowest_roe, roe),
    )


def roe_to_price_offset(position: Position, roe: float) -> float:
    """Absolute price distance that moves the position's ROE by ``roe`` percent"""
    size = _finite(position.size)
    margin = _finite(position.margin_used)
    if size > 0 and margin > 0:
        return _finite(roe / 100 * margin / size)

    leverage = _finite(position.leverage)
    if leverage > 0:
        return _finite(position.entry_price * roe / 100 / leverage)
    return 0.0
