"""
Risk Management Module - position sizing and admission of new positions
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from loguru import logger

from scalper.types import AdmissionResult, Position, ScalperConfig


MIN_EQUITY_USD = 10.0

# Confidence tiers for dynamic sizing
CONFIDENCE_BOOST_FLOOR = 70.0
CONFIDENCE_REDUCE_CEILING = 65.0
CONFIDENCE_REDUCE_FLOOR = 50.0

# Win-rate tiers for performance adaptation
HIGH_WIN_RATE_MULTIPLIER = 1.15
LOW_WIN_RATE_MULTIPLIER = 0.80


@dataclass
class PositionSize:
    """Sizing result"""
    usd_amount: float
    quantity: float
    base_usd: float
    confidence_multiplier: float = 1.0
    performance_multiplier: float = 1.0


def calculate_exposure(positions: Iterable[Position]) -> float:
    """Total margin committed across open positions"""
    return sum(position.margin_used for position in positions)


def confidence_multiplier(confidence: Optional[float], config: ScalperConfig) -> float:
    if confidence is None or not config.dynamic_position_sizing:
        return 1.0

    if confidence >= CONFIDENCE_BOOST_FLOOR:
        scale = min(1.0, (confidence - CONFIDENCE_BOOST_FLOOR) / (100 - CONFIDENCE_BOOST_FLOOR))
        return 1.0 + (config.max_position_size_boost - 1.0) * scale

    if confidence < CONFIDENCE_REDUCE_CEILING:
        span = CONFIDENCE_REDUCE_CEILING - CONFIDENCE_REDUCE_FLOOR
        scale = max(0.0, (confidence - CONFIDENCE_REDUCE_FLOOR) / span)
        reduction = config.min_position_size_reduction
        return reduction + (1.0 - reduction) * scale

    return 1.0


def performance_multiplier(win_rate: Optional[float], config: ScalperConfig) -> float:
    if win_rate is None or not config.performance_adaptation:
        return 1.0
    if win_rate >= config.high_win_rate_threshold:
        return HIGH_WIN_RATE_MULTIPLIER
    if win_rate < config.low_win_rate_threshold:
        return LOW_WIN_RATE_MULTIPLIER
    return 1.0


class RiskManager:
    """Sizing and admission checks for new positions"""

    def __init__(self, config: ScalperConfig, min_equity: float = MIN_EQUITY_USD):
        """Initialize risk manager"""
        self.config = config
        self.min_equity = min_equity
        logger.info("Risk manager initialized")

    def calculate_position_size(
        self,
        equity: float,
        current_exposure: float,
        price: float,
        confidence: Optional[float] = None,
        win_rate: Optional[float] = None,
    ) -> PositionSize:
        """
        Size a new order

        Args:
            equity: Account equity
            current_exposure: Margin already committed
            price: Expected entry price
            confidence: Signal confidence 0-100, None for no adjustment
            win_rate: Recent win rate 0-1, None for no adjustment

        Returns:
            PositionSize with the USD amount and the base-asset quantity
        """
        config = self.config

        if config.position_size_usd is not None:
            base_usd = config.position_size_usd
        else:
            available = max(0.0, equity - current_exposure)
            base_usd = available * config.position_size_percent / 100

        base_usd = max(config.min_position_size_usd, min(config.max_position_size_usd, base_usd))

        conf_mult = confidence_multiplier(confidence, config)
        perf_mult = performance_multiplier(win_rate, config)
        usd_amount = base_usd * conf_mult * perf_mult
        quantity = usd_amount / price if price > 0 else 0.0

        if conf_mult != 1.0 or perf_mult != 1.0:
            logger.debug(
                f"Size adjusted ${base_usd:.2f} -> ${usd_amount:.2f} "
                f"(confidence x{conf_mult:.2f}, performance x{perf_mult:.2f})"
            )

        return PositionSize(
            usd_amount=usd_amount,
            quantity=quantity,
            base_usd=base_usd,
            confidence_multiplier=conf_mult,
            performance_multiplier=perf_mult,
        )

    def can_open_position(
        self,
        equity: float,
        current_exposure: float,
        position_count: int,
        estimated_margin: float,
    ) -> AdmissionResult:
        """Sequential admission gate; the first failing check is reported"""
        config = self.config

        if equity < self.min_equity:
            return self._reject(f"Insufficient equity: ${equity:.2f} < ${self.min_equity:.0f}")

        if position_count >= config.max_positions:
            return self._reject(f"Max positions reached: {position_count}/{config.max_positions}")

        max_exposure = equity * config.max_exposure_percent / 100
        if max_exposure < self.min_equity:
            return self._reject(f"Max exposure too low: ${max_exposure:.2f} < ${self.min_equity:.0f}")

        new_exposure = current_exposure + estimated_margin
        if new_exposure > max_exposure:
            return self._reject(
                f"Exposure limit exceeded: ${new_exposure:.2f} > ${max_exposure:.2f} "
                f"(Current: ${current_exposure:.2f}, New: ${estimated_margin:.2f}, Max: ${max_exposure:.2f})"
            )

        return AdmissionResult(allowed=True)

    @staticmethod
    def _reject(reason: str) -> AdmissionResult:
        logger.warning(f"CAP_REJECT {reason}")
        return AdmissionResult(allowed=False, reason=reason)
