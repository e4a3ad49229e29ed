"""
Daily risk gate - account circuit breaker on daily loss, drawdown and profit target
"""
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from scalper.types import AgentState, DailyLimitCheck, ScalperConfig, utc_now


def _utc_date(value: datetime):
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).date()


def _pct_change(baseline: float, equity: float) -> float:
    """Loss of ``equity`` relative to ``baseline`` in percent; 0 without a baseline"""
    if baseline <= 0:
        return 0.0
    return (baseline - equity) / baseline * 100


def check_daily_reset(state: AgentState, now: Optional[datetime] = None) -> bool:
    """
    Start a new trading day if the last activity happened on an earlier UTC date.

    The daily baseline moves to the current equity and daily PnL is zeroed.
    Returns True when a reset happened.
    """
    now = now or utc_now()
    marks = [t for t in (state.last_trade_time, state.daily_reset_at) if t is not None]
    if not marks:
        return False

    last_mark = max(marks, key=lambda t: t if t.tzinfo else t.replace(tzinfo=timezone.utc))
    if _utc_date(last_mark) == _utc_date(now):
        return False

    logger.info(
        f"Daily reset for {state.agent_id}: baseline ${state.daily_start_equity:.2f} -> "
        f"${state.equity:.2f}, daily PnL ${state.daily_pnl:.2f} -> $0.00"
    )
    state.daily_start_equity = state.equity
    state.daily_pnl = 0.0
    state.daily_reset_at = now
    return True


def check_daily_limits(state: AgentState, config: ScalperConfig) -> DailyLimitCheck:
    """Decide whether new trades are allowed; the first breached limit wins"""
    daily_loss_pct = _pct_change(state.daily_start_equity, state.equity)
    drawdown_pct = _pct_change(state.starting_equity, state.equity)
    daily_gain_pct = -daily_loss_pct

    check = DailyLimitCheck(
        can_trade=True,
        daily_loss_pct=daily_loss_pct,
        drawdown_pct=drawdown_pct,
        daily_gain_pct=daily_gain_pct,
    )

    if daily_loss_pct >= config.max_daily_loss_percent:
        check.can_trade = False
        check.reason = (
            f"Daily loss limit reached: {daily_loss_pct:.2f}% >= {config.max_daily_loss_percent:.1f}%"
        )
    elif drawdown_pct >= config.max_drawdown_percent:
        check.can_trade = False
        check.reason = f"Max drawdown reached: {drawdown_pct:.2f}% >= {config.max_drawdown_percent:.1f}%"
    elif config.daily_profit_target_percent > 0 and daily_gain_pct >= config.daily_profit_target_percent:
        check.can_trade = False
        check.reason = (
            f"Daily profit target reached: {daily_gain_pct:.2f}% >= "
            f"{config.daily_profit_target_percent:.1f}%"
        )

    if not check.can_trade:
        logger.warning(f"Trading halted for {state.agent_id}: {check.reason}")
    return check
