"""
Typed structures for the position lifecycle engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Side(str, Enum):
    LONG = "long"
    SHORT = "short"


class ExitAction(str, Enum):
    HOLD = "hold"
    CLOSE_SL = "close_sl"
    CLOSE_TP = "close_tp"
    CLOSE_PARTIAL = "close_partial"
    CLOSE_TIME = "close_time"
    CLOSE_TRAILING = "close_trailing"
    CLOSE_LLM = "close_llm"


@dataclass(frozen=True)
class ScalperConfig:
    """Threshold snapshot consumed by the exit cascade and the gates.

    ROE values are percentages of margin (``-3.5`` means -3.5% ROE).
    """

    leverage: float = 10

    # Sizing
    position_size_percent: float = 25.0
    position_size_usd: Optional[float] = None
    min_position_size_usd: float = 10.0
    max_position_size_usd: float = 150.0
    dynamic_position_sizing: bool = True
    max_position_size_boost: float = 1.5
    min_position_size_reduction: float = 0.7
    performance_adaptation: bool = True
    high_win_rate_threshold: float = 0.65
    low_win_rate_threshold: float = 0.40

    # Admission
    max_positions: int = 4
    max_exposure_percent: float = 80.0

    # Account circuit breaker
    max_daily_loss_percent: float = 10.0
    max_drawdown_percent: float = 20.0
    daily_profit_target_percent: float = 0.0

    # Exits
    stop_loss_roe: float = -3.5
    take_profit_roe: float = 10.0
    trailing_activation_roe: float = 6.0
    trailing_distance_roe: float = 2.5
    partial_profit_enabled: bool = False
    partial_profit_roe: float = 5.0
    partial_profit_percent: float = 50.0
    # Whether the entry executor sets dynamic_tp_roe; the cascade uses any value present
    dynamic_tp_enabled: bool = True
    max_hold_time_minutes: float = 30.0
    time_exit_minutes: float = 5.0
    min_profit_usd: float = 0.1

    # Advisor exit review of positions the cascade holds
    llm_exit_analysis_enabled: bool = False
    llm_exit_analysis_minutes: float = 2.0
    llm_exit_confidence_threshold: float = 80.0


@dataclass
class Position:
    """One open leveraged exposure"""
    id: str
    agent_id: str
    symbol: str
    side: Side
    size: float
    entry_price: float
    leverage: float
    margin_used: float
    user_id: Optional[str] = None
    current_price: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_roe: float = 0.0
    highest_roe: float = 0.0
    lowest_roe: float = 0.0

    # Fixed / dynamic overrides (ROE %)
    stop_loss_roe: Optional[float] = None
    take_profit_roe: Optional[float] = None
    dynamic_tp_roe: Optional[float] = None

    # Protective state
    trailing_activated: bool = False
    trailing_stop_price: Optional[float] = None
    profit_lock_activated: bool = False
    profit_lock_price: Optional[float] = None
    partial_profit_taken: bool = False
    original_size: Optional[float] = None

    is_external: bool = False
    opened_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    max_hold_minutes: Optional[float] = None

    def __post_init__(self):
        if not isinstance(self.side, Side):
            self.side = Side(str(self.side).lower())
        if self.original_size is None:
            self.original_size = self.size

    @property
    def is_long(self) -> bool:
        return self.side == Side.LONG

    def age_minutes(self, now: datetime) -> float:
        return (now - self.opened_at).total_seconds() / 60


@dataclass
class PositionUpdate:
    """Result of one cascade evaluation"""
    position: Position
    action: ExitAction
    reason: str
    close_size: Optional[float] = None

    @property
    def should_close(self) -> bool:
        return self.action != ExitAction.HOLD


@dataclass
class AgentState:
    """Account-level mutable state"""
    agent_id: str
    user_id: str = "local"
    equity: float = 0.0
    starting_equity: float = 0.0
    daily_start_equity: float = 0.0
    daily_pnl: float = 0.0
    total_pnl: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    positions: Dict[str, Position] = field(default_factory=dict)
    tick_count: int = 0
    last_sync_tick: int = 0
    last_trade_time: Optional[datetime] = None
    last_tick_time: Optional[datetime] = None
    daily_reset_at: Optional[datetime] = None

    @property
    def win_rate(self) -> Optional[float]:
        if self.total_trades <= 0:
            return None
        return self.winning_trades / self.total_trades


@dataclass
class SyncResult:
    """Outcome of one reconciliation pass"""
    synced: List[str] = field(default_factory=list)
    closed: List[str] = field(default_factory=list)
    opened: List[str] = field(default_factory=list)
    imported: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class AdmissionResult:
    allowed: bool
    reason: Optional[str] = None


@dataclass
class DailyLimitCheck:
    can_trade: bool
    reason: Optional[str] = None
    daily_loss_pct: float = 0.0
    drawdown_pct: float = 0.0
    daily_gain_pct: float = 0.0
