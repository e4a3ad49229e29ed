"""
Bybit Exchange Client - linear USDT perpetuals on the unified account
"""
import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional

from loguru import logger
from pybit.unified_trading import HTTP

from scalper.exchange.base import (
    CloseResult,
    ExchangeClient,
    ExchangeError,
    ExchangePosition,
    to_float,
)


class OrderType(str, Enum):
    MARKET = "Market"
    LIMIT = "Limit"


class OrderSide(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


class BybitClient(ExchangeClient):
    """Bybit Exchange Client"""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = True,
        settle_coin: str = "USDT",
        http: Optional[Any] = None,
    ):
        """Initialize Bybit client"""
        self.testnet = testnet
        self.settle_coin = settle_coin
        self.category = "linear"

        # Initialize HTTP Session
        self.http = http or HTTP(
            testnet=testnet,
            api_key=api_key,
            api_secret=api_secret,
            recv_window=20000,
            max_retries=3,
            retry_delay=2,
        )

        logger.info(f"Bybit client initialized ({'Testnet' if testnet else 'Mainnet'})")

    async def _call(self, method: str, **params) -> Dict[str, Any]:
        """Run a blocking pybit call off the event loop and check retCode"""
        func = getattr(self.http, method)
        response = await asyncio.to_thread(func, **params)

        if response.get("retCode") != 0:
            message = response.get("retMsg", "Unknown error")
            logger.error(f"API error on {method}: {message}")
            raise ExchangeError(f"API error: {message}")
        return response

    @staticmethod
    def _result_list(response: Dict[str, Any]) -> List[Dict[str, Any]]:
        result = response.get("result", {})
        return result.get("list", []) if isinstance(result, dict) else []

    @staticmethod
    def _parse_position(pos_data: Dict[str, Any]) -> ExchangePosition:
        """Bybit reports an unsigned size plus a side; fold them into a signed size"""
        size = float(pos_data["size"])
        if pos_data.get("side") == OrderSide.SELL.value:
            size = -size

        leverage = pos_data.get("leverage")
        mark_price = pos_data.get("markPrice")
        margin = pos_data.get("positionIM")
        return ExchangePosition(
            symbol=pos_data["symbol"],
            size=size,
            entry_price=float(pos_data["avgPrice"]),
            unrealized_pnl=to_float(pos_data.get("unrealisedPnl")),
            leverage=to_float(leverage) if leverage else None,
            mark_price=to_float(mark_price) if mark_price else None,
            margin=to_float(margin) if margin else None,
        )

    async def get_positions(self) -> List[ExchangePosition]:
        """Get all open positions"""
        try:
            response = await self._call(
                "get_positions",
                category=self.category,
                settleCoin=self.settle_coin,
            )
        except Exception as e:
            logger.error(f"Failed to get positions: {e}")
            raise

        positions = []
        for pos_data in self._result_list(response):
            try:
                if float(pos_data.get("size", 0) or 0) > 0:
                    positions.append(self._parse_position(pos_data))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid position data: {e}")
                continue

        return positions

    async def _find_position(self, symbol: str) -> Optional[ExchangePosition]:
        positions = await self.get_positions()
        return next((p for p in positions if p.symbol == symbol), None)

    async def _reduce(self, symbol: str, quantity: Optional[float], reason: str) -> CloseResult:
        try:
            position = await self._find_position(symbol)
            if not position:
                logger.warning(f"No position found for {symbol}")
                return CloseResult(success=False, error="no_position")

            qty = abs(position.size) if quantity is None else min(quantity, abs(position.size))
            close_side = OrderSide.SELL if position.size > 0 else OrderSide.BUY

            response = await self._call(
                "place_order",
                category=self.category,
                symbol=symbol,
                side=close_side.value,
                orderType=OrderType.MARKET.value,
                qty=str(qty),
                reduceOnly=True,
            )
            order_id = response.get("result", {}).get("orderId")

            filled_price = None
            try:
                filled_price = await self.get_last_price(symbol)
            except Exception as e:
                logger.warning(f"Could not read fill price for {symbol}: {e}")

            logger.info(f"Reduced {symbol} by {qty} ({reason or 'no reason'}) order={order_id}")
            return CloseResult(success=True, order_id=order_id, filled_price=filled_price)

        except Exception as e:
            logger.error(f"Failed to close position {symbol}: {e}")
            return CloseResult(success=False, error=str(e))

    async def close_position(self, symbol: str, reason: str = "") -> CloseResult:
        """Close a position with a reduce-only market order"""
        return await self._reduce(symbol, None, reason)

    async def reduce_position(self, symbol: str, quantity: float, reason: str = "") -> CloseResult:
        """Close part of a position with a reduce-only market order"""
        return await self._reduce(symbol, quantity, reason)

    async def get_last_price(self, symbol: str) -> float:
        """Get the last traded price for a symbol"""
        response = await self._call("get_tickers", category=self.category, symbol=symbol)
        ticker_list = self._result_list(response)
        if not ticker_list:
            raise ExchangeError(f"Failed to get ticker: {response}")
        return float(ticker_list[0]["lastPrice"])

    async def get_equity(self) -> float:
        """Get total account equity"""
        response = await self._call("get_wallet_balance", accountType="UNIFIED")
        result_list = self._result_list(response)
        if not result_list:
            raise ExchangeError("Empty balance list in Bybit response")

        account_data = result_list[0]
        total_equity = to_float(account_data.get("totalEquity"))

        # Fall back to the settle coin when account totals are missing
        if total_equity == 0:
            for coin in account_data.get("coin", []):
                if coin.get("coin") == self.settle_coin:
                    total_equity = to_float(coin.get("equity"))
                    break

        return total_equity
