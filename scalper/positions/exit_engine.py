"""
Exit-decision cascade

Each tick the position is marked to the current price, its protective
state is refreshed, and then ``EXIT_RULES`` is walked in order. The first
rule that fires decides the action; otherwise the position is held.
"""
import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from loguru import logger

from scalper.positions.protective import (
    BREAK_EVEN_EXIT_ROE,
    break_even_hit,
    peak_protection_hit,
    profit_lock_hit,
    trailing_stop_hit,
    update_protective_state,
)
from scalper.positions.roe import apply_price
from scalper.types import ExitAction, Position, PositionUpdate, ScalperConfig, utc_now


@dataclass
class ExitContext:
    """Everything a rule needs to judge one position on one tick"""
    position: Position
    config: ScalperConfig
    elapsed_minutes: float
    take_profit_roe: float
    take_profit_source: str

    @property
    def roe(self) -> float:
        return self.position.unrealized_roe


@dataclass
class ExitDecision:
    action: ExitAction
    reason: str
    close_size: Optional[float] = None


ExitRule = Callable[[ExitContext], Optional[ExitDecision]]


def effective_take_profit(position: Position, config: ScalperConfig) -> Tuple[float, str]:
    """Take-profit ROE in force and the name of where it came from"""
    if position.dynamic_tp_roe is not None:
        return position.dynamic_tp_roe, "dynamic TP"
    if position.take_profit_roe is not None:
        return position.take_profit_roe, "position TP"
    return config.take_profit_roe, "config TP"


def effective_stop_loss(position: Position, config: ScalperConfig) -> float:
    if position.stop_loss_roe is not None:
        return position.stop_loss_roe
    return config.stop_loss_roe


def check_stop_loss(ctx: ExitContext) -> Optional[ExitDecision]:
    stop_loss = effective_stop_loss(ctx.position, ctx.config)
    if ctx.roe <= stop_loss:
        return ExitDecision(
            ExitAction.CLOSE_SL,
            f"Quick stop loss: ROE {ctx.roe:.2f}% <= {stop_loss:.1f}%",
        )
    return None


def check_take_profit(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.roe >= ctx.take_profit_roe:
        return ExitDecision(
            ExitAction.CLOSE_TP,
            f"Take profit ({ctx.take_profit_source} {ctx.take_profit_roe:.1f}%): ROE {ctx.roe:.2f}%",
        )
    return None


def check_partial_profit(ctx: ExitContext) -> Optional[ExitDecision]:
    position, config = ctx.position, ctx.config
    if position.partial_profit_taken or not config.partial_profit_enabled:
        return None
    if not (config.partial_profit_roe <= ctx.roe < ctx.take_profit_roe):
        return None
    if abs(position.unrealized_pnl) < config.min_profit_usd:
        return None

    close_size = min(position.size, position.original_size * config.partial_profit_percent / 100)
    return ExitDecision(
        ExitAction.CLOSE_PARTIAL,
        f"Partial profit: closing {config.partial_profit_percent:.0f}% at ROE {ctx.roe:.2f}%",
        close_size=close_size,
    )


def check_max_hold_time(ctx: ExitContext) -> Optional[ExitDecision]:
    budget = ctx.position.max_hold_minutes
    if budget is None:
        budget = ctx.config.max_hold_time_minutes
    if ctx.elapsed_minutes >= budget:
        return ExitDecision(
            ExitAction.CLOSE_TIME,
            f"Max hold time exceeded: {ctx.elapsed_minutes:.1f}min >= {budget:.0f}min (ROE {ctx.roe:.2f}%)",
        )
    return None


def check_trailing_stop(ctx: ExitContext) -> Optional[ExitDecision]:
    if trailing_stop_hit(ctx.position):
        return ExitDecision(
            ExitAction.CLOSE_TRAILING,
            f"Trailing stop hit at {ctx.position.trailing_stop_price:.6g} (ROE {ctx.roe:.2f}%)",
        )
    return None


def check_profit_lock(ctx: ExitContext) -> Optional[ExitDecision]:
    if profit_lock_hit(ctx.position):
        return ExitDecision(
            ExitAction.CLOSE_TRAILING,
            f"Profit lock hit at {ctx.position.profit_lock_price:.6g} (ROE {ctx.roe:.2f}%)",
        )
    return None


def check_break_even(ctx: ExitContext) -> Optional[ExitDecision]:
    if break_even_hit(ctx.position):
        return ExitDecision(
            ExitAction.CLOSE_TRAILING,
            f"Break-even exit: ROE {ctx.roe:.2f}% < {BREAK_EVEN_EXIT_ROE:.1f}%",
        )
    return None


def check_peak_protection(ctx: ExitContext) -> Optional[ExitDecision]:
    if peak_protection_hit(ctx.position):
        return ExitDecision(
            ExitAction.CLOSE_TRAILING,
            f"Peak protection: peak {ctx.position.highest_roe:.2f}% -> ROE {ctx.roe:.2f}%",
        )
    return None


def check_time_exit(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.roe <= 0 and ctx.elapsed_minutes > ctx.config.time_exit_minutes:
        return ExitDecision(
            ExitAction.CLOSE_TIME,
            f"Time exit: {ctx.elapsed_minutes:.1f}min without profit (ROE {ctx.roe:.2f}%)",
        )
    return None


# Evaluation order. First rule to return a decision wins.
EXIT_RULES: List[Tuple[str, ExitRule]] = [
    ("stop_loss", check_stop_loss),
    ("take_profit", check_take_profit),
    ("partial_profit", check_partial_profit),
    ("max_hold_time", check_max_hold_time),
    ("trailing_stop", check_trailing_stop),
    ("profit_lock", check_profit_lock),
    ("break_even", check_break_even),
    ("peak_protection", check_peak_protection),
    ("time_exit", check_time_exit),
]


def evaluate_position(
    position: Position,
    price: float,
    config: ScalperConfig,
    now: Optional[datetime] = None,
) -> PositionUpdate:
    """
    Run the exit cascade for one position at one price.

    Args:
        position: Current position value (left untouched)
        price: Latest market price
        config: Threshold snapshot
        now: Evaluation time, defaults to the current UTC time

    Returns:
        PositionUpdate with the next position value, the action and its reason
    """
    now = now or utc_now()

    try:
        price = float(price)
    except (TypeError, ValueError):
        price = math.nan
    if not math.isfinite(price):
        return PositionUpdate(position, ExitAction.HOLD, f"Hold: invalid price {price!r}")

    updated = apply_price(position, price)
    updated = update_protective_state(updated, config)
    updated = replace(updated, updated_at=now)

    take_profit, source = effective_take_profit(updated, config)
    ctx = ExitContext(
        position=updated,
        config=config,
        elapsed_minutes=updated.age_minutes(now),
        take_profit_roe=take_profit,
        take_profit_source=source,
    )

    for name, rule in EXIT_RULES:
        decision = rule(ctx)
        if decision is None:
            continue

        if decision.action == ExitAction.CLOSE_PARTIAL:
            updated = replace(updated, partial_profit_taken=True)
        logger.debug(f"{updated.symbol} exit rule {name}: {decision.reason}")
        return PositionUpdate(updated, decision.action, decision.reason, decision.close_size)

    return PositionUpdate(updated, ExitAction.HOLD, f"Hold: ROE {ctx.roe:.2f}%")
