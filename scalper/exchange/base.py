"""
Exchange client contract consumed by the reconciler and the agent
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


def to_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None or value == "":
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) not in (None, ""):
            return data[key]
    return None


class ExchangeError(Exception):
    """Exchange rejected a request or returned an unusable response"""


@dataclass
class ExchangePosition:
    """Position as reported by the exchange. ``size`` is signed: negative means short."""
    symbol: str
    size: float
    entry_price: float
    unrealized_pnl: float = 0.0
    leverage: Optional[float] = None
    mark_price: Optional[float] = None
    margin: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExchangePosition":
        leverage = _first(data, "leverage")
        mark_price = _first(data, "markPrice", "mark_price")
        margin = _first(data, "margin", "marginUsed", "positionIM")

        # An explicit side wins over the sign of the amount
        size = to_float(_first(data, "size", "positionAmt"))
        side = str(data.get("side") or "").lower()
        if side in ("long", "buy"):
            size = abs(size)
        elif side in ("short", "sell"):
            size = -abs(size)

        return cls(
            symbol=str(data.get("symbol") or ""),
            size=size,
            entry_price=to_float(_first(data, "entryPrice", "avgPrice", "entry_price")),
            unrealized_pnl=to_float(_first(data, "unrealizedProfit", "unrealisedPnl", "unrealized_pnl")),
            leverage=to_float(leverage) if leverage is not None else None,
            mark_price=to_float(mark_price) if mark_price is not None else None,
            margin=to_float(margin) if margin is not None else None,
        )


@dataclass
class CloseResult:
    success: bool
    order_id: Optional[str] = None
    filled_price: Optional[float] = None
    error: Optional[str] = None


class ExchangeClient(ABC):
    """Narrow async interface to an exchange account"""

    @abstractmethod
    async def get_positions(self) -> List[ExchangePosition]:
        """Open positions on the account. Raises on transport or API failure."""

    @abstractmethod
    async def close_position(self, symbol: str, reason: str = "") -> CloseResult:
        """Close the whole position on ``symbol``"""

    @abstractmethod
    async def reduce_position(self, symbol: str, quantity: float, reason: str = "") -> CloseResult:
        """Close ``quantity`` of the position on ``symbol``"""

    @abstractmethod
    async def get_last_price(self, symbol: str) -> float:
        """Last traded price for ``symbol``"""

    @abstractmethod
    async def get_equity(self) -> float:
        """Account equity in the settle currency"""
