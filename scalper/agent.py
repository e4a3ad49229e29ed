"""
Scalper agent - one account's tick: sync, evaluate exits, execute closes
"""
import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from scalper.exchange.base import CloseResult, ExchangeClient
from scalper.llm.deepseek_client import AdvisoryResult, DeepSeekClient
from scalper.positions.position_monitor import PositionMonitor
from scalper.positions.reconciler import sync_positions
from scalper.positions.roe import calculate_pnl
from scalper.risk.daily_risk import check_daily_limits, check_daily_reset
from scalper.risk.risk_manager import PositionSize, RiskManager, calculate_exposure
from scalper.types import (
    AdmissionResult,
    AgentState,
    DailyLimitCheck,
    ExitAction,
    Position,
    PositionUpdate,
    ScalperConfig,
    SyncResult,
    utc_now,
)


@dataclass
class ExecutedExit:
    symbol: str
    action: ExitAction
    reason: str
    quantity: float
    realized_pnl: float
    order_id: Optional[str] = None


@dataclass
class TickReport:
    """What happened during one tick of one account"""
    agent_id: str
    sync: Optional[SyncResult] = None
    decisions: Dict[str, PositionUpdate] = field(default_factory=dict)
    executed: List[ExecutedExit] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    daily: Optional[DailyLimitCheck] = None


class ScalperAgent:
    """Owns one account's state and runs its ticks one at a time"""

    def __init__(
        self,
        agent_id: str,
        client: ExchangeClient,
        config: ScalperConfig,
        user_id: str = "local",
        network_timeout: float = 10.0,
        advisor: Optional[DeepSeekClient] = None,
        state: Optional[AgentState] = None,
    ):
        self.agent_id = agent_id
        self.client = client
        self.config = config
        self.network_timeout = network_timeout
        self.advisor = advisor
        self.state = state or AgentState(agent_id=agent_id, user_id=user_id)
        self.monitor = PositionMonitor(self.state.positions)
        self.risk_manager = RiskManager(config)
        self._lock = asyncio.Lock()
        self._exit_reviewed_at: Dict[str, datetime] = {}

        logger.info(f"Scalper agent {agent_id} ready")

    async def _bounded(self, awaitable):
        return await asyncio.wait_for(awaitable, self.network_timeout)

    def add_position(self, position: Position):
        """Track a position opened by the entry executor"""
        self.monitor.add_position(position)

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Run one full evaluation pass for this account"""
        async with self._lock:
            now = now or utc_now()
            state = self.state
            state.tick_count += 1
            report = TickReport(agent_id=self.agent_id)

            await self._refresh_equity(now)
            check_daily_reset(state, now)

            report.sync = await sync_positions(
                self.client,
                state.positions,
                self.agent_id,
                self.config,
                timeout=self.network_timeout,
                now=now,
                user_id=state.user_id,
            )
            if report.sync.error is None:
                state.last_sync_tick = state.tick_count

            prices = await self._fetch_prices(list(state.positions))
            evaluation = self.monitor.evaluate_all(prices, self.config, now)
            report.decisions = evaluation.updates
            report.skipped = evaluation.skipped
            report.errors.update(evaluation.errors)

            exits = evaluation.exits + await self._review_exits(evaluation.updates, now)
            for update in exits:
                report.decisions[update.position.symbol] = update
                try:
                    executed = await self._execute(update, now)
                except Exception as e:
                    logger.exception(f"Failed to execute {update.action.value} on {update.position.symbol}: {e}")
                    executed = None
                    report.errors[update.position.symbol] = str(e)
                    self._undo_partial_mark(update)

                if executed is not None:
                    report.executed.append(executed)
                elif update.position.symbol not in report.errors:
                    report.errors[update.position.symbol] = "close failed"

            report.daily = check_daily_limits(state, self.config)
            state.last_tick_time = now
            return report

    async def _review_exits(self, updates: Dict[str, PositionUpdate], now: datetime) -> List[PositionUpdate]:
        """Ask the advisor about positions the cascade is holding"""
        config = self.config
        if self.advisor is None or not config.llm_exit_analysis_enabled:
            return []

        interval = config.llm_exit_analysis_minutes
        exits = []
        for symbol, update in updates.items():
            position = update.position
            if update.should_close or position.age_minutes(now) < interval:
                continue
            last = self._exit_reviewed_at.get(symbol)
            if last is not None and (now - last).total_seconds() < interval * 60:
                continue

            self._exit_reviewed_at[symbol] = now
            advice = await self.advisor.analyze_exit(position, {}, [], now=now)
            if advice.agrees and advice.confidence >= config.llm_exit_confidence_threshold:
                exits.append(PositionUpdate(
                    position,
                    ExitAction.CLOSE_LLM,
                    f"LLM exit ({advice.confidence:.0f}%): {advice.reason}",
                ))
        return exits

    async def _refresh_equity(self, now: datetime):
        state = self.state
        try:
            state.equity = await self._bounded(self.client.get_equity())
        except Exception as e:
            logger.warning(f"Equity refresh failed for {self.agent_id}, keeping ${state.equity:.2f}: {e!r}")
            return

        if state.starting_equity <= 0:
            state.starting_equity = state.equity
        if state.daily_start_equity <= 0:
            state.daily_start_equity = state.equity
            state.daily_reset_at = now

    async def _fetch_prices(self, symbols: List[str]) -> Dict[str, float]:
        if not symbols:
            return {}

        results = await asyncio.gather(
            *(self._bounded(self.client.get_last_price(symbol)) for symbol in symbols),
            return_exceptions=True,
        )

        prices = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to get price for {symbol}: {result!r}")
                continue
            prices[symbol] = result
        return prices

    async def _execute(self, update: PositionUpdate, now: datetime) -> Optional[ExecutedExit]:
        position = update.position
        symbol = position.symbol
        partial = update.action == ExitAction.CLOSE_PARTIAL

        if partial:
            quantity = update.close_size or 0.0
            result: CloseResult = await self._bounded(
                self.client.reduce_position(symbol, quantity, update.reason)
            )
        else:
            quantity = position.size
            result = await self._bounded(self.client.close_position(symbol, update.reason))

        if not result.success:
            logger.error(f"Close of {symbol} rejected: {result.error}")
            self._undo_partial_mark(update)
            return None

        fill_price = result.filled_price or position.current_price
        realized = calculate_pnl(replace(position, size=quantity), fill_price)
        self._record_trade(realized, now)

        remaining = position.size - quantity
        if not partial or remaining <= 0:
            self.monitor.remove_position(symbol)
            self._exit_reviewed_at.pop(symbol, None)
        else:
            self.state.positions[symbol] = replace(
                position,
                size=remaining,
                margin_used=position.margin_used * remaining / position.size,
            )

        logger.info(
            f"{symbol} {update.action.value} qty={quantity} pnl=${realized:.2f} | {update.reason}"
        )
        return ExecutedExit(
            symbol=symbol,
            action=update.action,
            reason=update.reason,
            quantity=quantity,
            realized_pnl=realized,
            order_id=result.order_id,
        )

    def _undo_partial_mark(self, update: PositionUpdate):
        """Let a failed partial exit be retried on the next tick"""
        if update.action != ExitAction.CLOSE_PARTIAL:
            return
        symbol = update.position.symbol
        if symbol in self.state.positions:
            self.state.positions[symbol] = replace(self.state.positions[symbol], partial_profit_taken=False)

    def _record_trade(self, pnl: float, now: datetime):
        state = self.state
        state.total_pnl += pnl
        state.daily_pnl += pnl
        state.total_trades += 1
        if pnl > 0:
            state.winning_trades += 1
        state.last_trade_time = now

    def can_open(self, estimated_margin: float) -> AdmissionResult:
        """Combined daily circuit breaker and admission gate"""
        daily = check_daily_limits(self.state, self.config)
        if not daily.can_trade:
            return AdmissionResult(allowed=False, reason=daily.reason)

        positions = self.state.positions.values()
        return self.risk_manager.can_open_position(
            equity=self.state.equity,
            current_exposure=calculate_exposure(positions),
            position_count=len(self.state.positions),
            estimated_margin=estimated_margin,
        )

    def size_order(
        self,
        price: float,
        confidence: Optional[float] = None,
        win_rate: Optional[float] = None,
    ) -> PositionSize:
        if win_rate is None:
            win_rate = self.state.win_rate
        return self.risk_manager.calculate_position_size(
            equity=self.state.equity,
            current_exposure=calculate_exposure(self.state.positions.values()),
            price=price,
            confidence=confidence,
            win_rate=win_rate,
        )

    async def review_entry(
        self,
        symbol: str,
        direction: str,
        indicators: Dict[str, Any],
        reasons: Sequence[str],
        klines: Sequence[Any],
    ) -> AdvisoryResult:
        """Second opinion on an entry; neutral agreement when no advisor is configured"""
        if self.advisor is None:
            return AdvisoryResult(direction.upper(), 50, "LLM disabled", True)
        return await self.advisor.analyze_entry(symbol, direction, indicators, reasons, klines)


async def run_agents(
    agents: Sequence[ScalperAgent],
    now: Optional[datetime] = None,
) -> Dict[str, Optional[TickReport]]:
    """Tick every account concurrently; a failing account does not stop the others"""
    results = await asyncio.gather(*(agent.tick(now) for agent in agents), return_exceptions=True)

    reports: Dict[str, Optional[TickReport]] = {}
    for agent, result in zip(agents, results):
        if isinstance(result, BaseException):
            logger.opt(exception=result).error(f"Tick failed for agent {agent.agent_id}: {result}")
            reports[agent.agent_id] = None
        else:
            reports[agent.agent_id] = result
    return reports
