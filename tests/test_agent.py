"""
Scalper agent tick orchestration tests
"""
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from scalper.agent import ScalperAgent, run_agents
from scalper.exchange.base import CloseResult, ExchangeClient, ExchangePosition
from scalper.llm.deepseek_client import AdvisoryResult
from scalper.types import ExitAction


class FakeExchange(ExchangeClient):
    """In-memory exchange account"""

    def __init__(self, positions=None, prices=None, equity=1000.0):
        self.positions = {p.symbol: p for p in positions or []}
        self.prices = dict(prices or {})
        self.equity = equity
        self.fail_positions = False
        self.fail_equity = False
        self.reject_close = False
        self.closed = []
        self.reduced = []

    async def get_positions(self):
        if self.fail_positions:
            raise ConnectionError("exchange unreachable")
        return list(self.positions.values())

    async def close_position(self, symbol, reason=""):
        if self.reject_close:
            return CloseResult(success=False, error="rejected")
        self.closed.append((symbol, reason))
        self.positions.pop(symbol, None)
        return CloseResult(success=True, order_id=f"close-{symbol}", filled_price=self.prices.get(symbol))

    async def reduce_position(self, symbol, quantity, reason=""):
        self.reduced.append((symbol, quantity, reason))
        position = self.positions[symbol]
        self.positions[symbol] = replace(position, size=position.size - quantity)
        return CloseResult(success=True, order_id=f"reduce-{symbol}", filled_price=self.prices.get(symbol))

    async def get_last_price(self, symbol):
        if symbol not in self.prices:
            raise KeyError(symbol)
        return self.prices[symbol]

    async def get_equity(self):
        if self.fail_equity:
            raise ConnectionError("exchange unreachable")
        return self.equity


def on_exchange(symbol="BTCUSDT", size=1.0, entry_price=100.0):
    return ExchangePosition(symbol=symbol, size=size, entry_price=entry_price, leverage=10)


@pytest.fixture
def make_agent(config):
    def _make(exchange, **overrides):
        return ScalperAgent("agent-1", exchange, replace(config, **overrides), network_timeout=1.0)

    return _make


# ==================== TICK ====================

async def test_stop_loss_is_executed(make_agent, make_position, now):
    exchange = FakeExchange([on_exchange()], prices={"BTCUSDT": 99.5})
    agent = make_agent(exchange)
    agent.add_position(make_position())

    report = await agent.tick(now)

    assert report.sync.synced == ["BTCUSDT"]
    assert report.decisions["BTCUSDT"].action == ExitAction.CLOSE_SL
    assert exchange.closed == [("BTCUSDT", report.decisions["BTCUSDT"].reason)]
    assert [e.action for e in report.executed] == [ExitAction.CLOSE_SL]
    assert report.executed[0].realized_pnl == pytest.approx(-0.5)
    assert agent.state.positions == {}
    assert agent.state.total_trades == 1
    assert agent.state.winning_trades == 0
    assert agent.state.daily_pnl == pytest.approx(-0.5)
    assert agent.state.last_trade_time == now


async def test_hold_keeps_updated_position(make_agent, make_position, now):
    exchange = FakeExchange([on_exchange()], prices={"BTCUSDT": 100.7})
    agent = make_agent(exchange)
    agent.add_position(make_position())

    report = await agent.tick(now)

    assert report.executed == []
    assert agent.state.positions["BTCUSDT"].trailing_activated is True
    assert agent.state.tick_count == 1
    assert agent.state.last_sync_tick == 1
    assert agent.state.last_tick_time == now


async def test_partial_exit_shrinks_position(make_agent, make_position, now):
    exchange = FakeExchange([on_exchange()], prices={"BTCUSDT": 100.2})
    agent = make_agent(exchange, partial_profit_enabled=True, partial_profit_roe=1.5, partial_profit_percent=50)
    agent.add_position(make_position())

    report = await agent.tick(now)

    assert exchange.reduced[0][:2] == ("BTCUSDT", pytest.approx(0.5))
    position = agent.state.positions["BTCUSDT"]
    assert position.size == pytest.approx(0.5)
    assert position.margin_used == pytest.approx(5.0)
    assert position.original_size == 1.0
    assert position.partial_profit_taken is True
    assert report.executed[0].realized_pnl == pytest.approx(0.1)
    assert agent.state.winning_trades == 1


async def test_rejected_close_keeps_position(make_agent, make_position, now):
    exchange = FakeExchange([on_exchange()], prices={"BTCUSDT": 99.5})
    exchange.reject_close = True
    agent = make_agent(exchange)
    agent.add_position(make_position())

    report = await agent.tick(now)

    assert report.executed == []
    assert "BTCUSDT" in report.errors
    assert "BTCUSDT" in agent.state.positions
    assert agent.state.total_trades == 0


async def test_failed_sync_still_evaluates_positions(make_agent, make_position, now):
    exchange = FakeExchange(prices={"BTCUSDT": 100.7})
    exchange.fail_positions = True
    agent = make_agent(exchange)
    agent.add_position(make_position())

    report = await agent.tick(now)

    assert report.sync.error == "exchange unreachable"
    assert agent.state.last_sync_tick == 0
    assert report.decisions["BTCUSDT"].action == ExitAction.HOLD


async def test_missing_price_is_skipped(make_agent, make_position, now):
    agent = make_agent(FakeExchange([on_exchange()]))
    agent.add_position(make_position())

    report = await agent.tick(now)

    assert report.skipped == ["BTCUSDT"]
    assert "BTCUSDT" in agent.state.positions


async def test_external_position_is_imported_and_evaluated(make_agent, now):
    exchange = FakeExchange([on_exchange("ETHUSDT", size=-1.0)], prices={"ETHUSDT": 100.0})
    agent = make_agent(exchange)

    report = await agent.tick(now)

    assert report.sync.imported == ["ETHUSDT"]
    assert report.decisions["ETHUSDT"].action == ExitAction.HOLD
    assert agent.state.positions["ETHUSDT"].is_external is True


async def test_first_tick_sets_equity_baselines(make_agent, now):
    agent = make_agent(FakeExchange(equity=500.0))

    report = await agent.tick(now)

    assert agent.state.starting_equity == 500.0
    assert agent.state.daily_start_equity == 500.0
    assert report.daily.can_trade is True


async def test_equity_failure_keeps_previous_value(make_agent, now):
    exchange = FakeExchange(equity=500.0)
    agent = make_agent(exchange)
    await agent.tick(now)

    exchange.fail_equity = True
    await agent.tick(now + timedelta(seconds=15))

    assert agent.state.equity == 500.0


async def test_daily_reset_on_new_day(make_agent, make_position, now):
    exchange = FakeExchange([on_exchange()], prices={"BTCUSDT": 99.5})
    agent = make_agent(exchange)
    agent.add_position(make_position())
    await agent.tick(now)

    exchange.equity = 990.0
    await agent.tick(now + timedelta(days=1))

    assert agent.state.daily_start_equity == 990.0
    assert agent.state.daily_pnl == 0.0


# ==================== GATES ====================

async def test_can_open_respects_daily_limit(make_agent, now):
    exchange = FakeExchange(equity=1000.0)
    agent = make_agent(exchange)
    await agent.tick(now)

    assert agent.can_open(50).allowed is True

    agent.state.equity = 880.0
    result = agent.can_open(50)

    assert result.allowed is False
    assert "Daily loss limit" in result.reason


async def test_can_open_uses_tracked_exposure(make_agent, make_position, now):
    agent = make_agent(FakeExchange(equity=100.0), max_exposure_percent=50.0)
    await agent.tick(now)
    agent.add_position(make_position(margin_used=45.0))

    result = agent.can_open(10)

    assert result.allowed is False
    assert result.reason.startswith("Exposure limit exceeded")


async def test_size_order_uses_win_rate(make_agent, now):
    agent = make_agent(FakeExchange(equity=1000.0), position_size_usd=100.0)
    agent.state.total_trades = 10
    agent.state.winning_trades = 8

    size = agent.size_order(price=50.0)

    assert size.performance_multiplier == pytest.approx(1.15)
    assert size.quantity == pytest.approx(115 / 50)


async def test_review_entry_without_advisor(make_agent):
    agent = make_agent(FakeExchange())

    result = await agent.review_entry("BTCUSDT", "long", {}, [], [])

    assert result.action == "LONG"
    assert result.agrees is True


# ==================== LLM EXIT REVIEW ====================

@pytest.fixture
def advisor():
    client = MagicMock()
    client.analyze_exit = AsyncMock(return_value=AdvisoryResult("EXIT", 85, "momentum fading", True))
    return client


@pytest.fixture
def make_reviewed_agent(config, advisor):
    def _make(exchange, **overrides):
        overrides.setdefault("llm_exit_analysis_enabled", True)
        return ScalperAgent(
            "agent-1", exchange, replace(config, **overrides), network_timeout=1.0, advisor=advisor
        )

    return _make


async def test_llm_exit_closes_held_position(make_reviewed_agent, make_position, advisor, now):
    exchange = FakeExchange([on_exchange()], prices={"BTCUSDT": 100.02})
    agent = make_reviewed_agent(exchange)
    agent.add_position(make_position(minutes_open=3))

    report = await agent.tick(now)

    assert report.decisions["BTCUSDT"].action == ExitAction.CLOSE_LLM
    assert "momentum fading" in report.decisions["BTCUSDT"].reason
    assert [e.action for e in report.executed] == [ExitAction.CLOSE_LLM]
    assert exchange.closed[0][0] == "BTCUSDT"
    assert agent.state.positions == {}
    advisor.analyze_exit.assert_awaited_once()


async def test_llm_exit_below_confidence_threshold_holds(make_reviewed_agent, make_position, advisor, now):
    advisor.analyze_exit.return_value = AdvisoryResult("EXIT", 70, "maybe", True)
    exchange = FakeExchange([on_exchange()], prices={"BTCUSDT": 100.02})
    agent = make_reviewed_agent(exchange)
    agent.add_position(make_position(minutes_open=3))

    report = await agent.tick(now)

    assert report.decisions["BTCUSDT"].action == ExitAction.HOLD
    assert exchange.closed == []


async def test_llm_exit_review_is_rate_limited_per_position(make_reviewed_agent, make_position, advisor, now):
    advisor.analyze_exit.return_value = AdvisoryResult("HOLD", 80, "let it run", False)
    exchange = FakeExchange([on_exchange()], prices={"BTCUSDT": 100.02})
    agent = make_reviewed_agent(exchange)
    agent.add_position(make_position(minutes_open=3))

    await agent.tick(now)
    await agent.tick(now + timedelta(seconds=15))
    assert advisor.analyze_exit.await_count == 1

    await agent.tick(now + timedelta(minutes=2))
    assert advisor.analyze_exit.await_count == 2


async def test_llm_exit_review_skips_young_positions(make_reviewed_agent, make_position, advisor, now):
    agent = make_reviewed_agent(FakeExchange([on_exchange()], prices={"BTCUSDT": 100.02}))
    agent.add_position(make_position(minutes_open=1))

    await agent.tick(now)

    advisor.analyze_exit.assert_not_awaited()


async def test_llm_exit_review_disabled(make_reviewed_agent, make_position, advisor, now):
    agent = make_reviewed_agent(
        FakeExchange([on_exchange()], prices={"BTCUSDT": 100.02}), llm_exit_analysis_enabled=False
    )
    agent.add_position(make_position(minutes_open=3))

    report = await agent.tick(now)

    assert report.decisions["BTCUSDT"].action == ExitAction.HOLD
    advisor.analyze_exit.assert_not_awaited()


# ==================== MULTI-ACCOUNT ====================

async def test_failing_account_does_not_stop_others(config, now, monkeypatch):
    healthy = ScalperAgent("healthy", FakeExchange(), config)
    broken = ScalperAgent("broken", FakeExchange(), config)

    async def explode(now=None):
        raise RuntimeError("state corrupted")

    monkeypatch.setattr(broken, "tick", explode)

    reports = await run_agents([broken, healthy], now)

    assert reports["broken"] is None
    assert reports["healthy"] is not None
    assert reports["healthy"].agent_id == "healthy"


async def test_accounts_do_not_share_state(config, make_position, now):
    first = ScalperAgent("first", FakeExchange([on_exchange()], prices={"BTCUSDT": 100.0}), config)
    second = ScalperAgent("second", FakeExchange(), config)
    first.add_position(make_position())

    await run_agents([first, second], now)

    assert "BTCUSDT" in first.state.positions
    assert second.state.positions == {}
