"""
Position Monitoring - per-tick exit evaluation for one account
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from scalper.positions.exit_engine import evaluate_position
from scalper.types import Position, PositionUpdate, ScalperConfig, utc_now


@dataclass
class EvaluationReport:
    """Outcome of evaluating every tracked position once"""
    updates: Dict[str, PositionUpdate] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def exits(self) -> List[PositionUpdate]:
        return [update for update in self.updates.values() if update.should_close]


class PositionMonitor:
    """Run the exit cascade over an account's positions"""

    def __init__(self, positions: Optional[Dict[str, Position]] = None):
        """Initialize position monitor"""
        self.monitored_positions: Dict[str, Position] = positions if positions is not None else {}
        logger.info("Position monitor initialized")

    def add_position(self, position: Position):
        """Add a position to monitor"""
        self.monitored_positions[position.symbol] = position
        logger.info(f"Now monitoring position: {position.symbol} {position.side.value}")

    def evaluate_all(
        self,
        prices: Mapping[str, float],
        config: ScalperConfig,
        now: Optional[datetime] = None,
    ) -> EvaluationReport:
        """
        Evaluate every monitored position against its latest price

        Positions are evaluated one after another. The next position value
        returned by the cascade replaces the stored one. A position without
        a price is skipped; a position whose evaluation fails is reported
        and the rest are still evaluated.
        """
        now = now or utc_now()
        report = EvaluationReport()

        for symbol in list(self.monitored_positions):
            position = self.monitored_positions[symbol]
            price = prices.get(symbol)
            if price is None:
                logger.warning(f"No price for {symbol}, skipping exit evaluation")
                report.skipped.append(symbol)
                continue

            try:
                update = evaluate_position(position, price, config, now)
            except Exception as e:
                logger.exception(f"Exit evaluation failed for {symbol}: {e}")
                report.errors[symbol] = str(e)
                continue

            self.monitored_positions[symbol] = update.position
            report.updates[symbol] = update
            if update.should_close:
                logger.info(f"{symbol} -> {update.action.value}: {update.reason}")

        return report

    def get_position_summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Get summary of all monitored positions"""
        if not self.monitored_positions:
            return {"total_positions": 0, "positions": []}

        now = now or utc_now()
        summaries = []
        total_pnl = 0.0
        total_margin = 0.0

        for symbol, pos in self.monitored_positions.items():
            summaries.append({
                "symbol": symbol,
                "side": pos.side.value,
                "unrealized_pnl": round(pos.unrealized_pnl, 2),
                "unrealized_roe": round(pos.unrealized_roe, 2),
                "highest_roe": round(pos.highest_roe, 2),
                "trailing_activated": pos.trailing_activated,
                "time_in_trade_mins": round(pos.age_minutes(now), 1),
                "is_external": pos.is_external,
            })

            total_pnl += pos.unrealized_pnl
            total_margin += pos.margin_used

        return {
            "total_positions": len(self.monitored_positions),
            "positions": summaries,
            "total_unrealized_pnl": round(total_pnl, 2),
            "total_margin": round(total_margin, 2),
        }

    def remove_position(self, symbol: str):
        """Remove position from monitoring"""
        if symbol in self.monitored_positions:
            del self.monitored_positions[symbol]
            logger.info(f"Stopped monitoring {symbol}")
