"""
Shared fixtures for the scalper test suite
"""
from datetime import datetime, timedelta, timezone

import pytest

from scalper.types import Position, ScalperConfig, Side


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Fixed evaluation time"""
    return NOW


@pytest.fixture
def config():
    """Default thresholds: SL -3.5% ROE, TP 10% ROE, trailing 6/2.5, time exit 5min, max hold 30min"""
    return ScalperConfig()


@pytest.fixture
def make_position(now):
    """
    Position factory

    With the defaults (entry 100, size 1, margin 10) ROE is 10x the price
    move, so price 100.5 is +5% ROE and 99.5 is -5% ROE.
    """
    def _make(
        symbol="BTCUSDT",
        side=Side.LONG,
        entry_price=100.0,
        size=1.0,
        leverage=10,
        margin_used=10.0,
        minutes_open=1.0,
        **overrides,
    ):
        return Position(
            id=f"pos-{symbol}",
            agent_id="agent-1",
            symbol=symbol,
            side=side,
            size=size,
            entry_price=entry_price,
            current_price=entry_price,
            leverage=leverage,
            margin_used=margin_used,
            opened_at=now - timedelta(minutes=minutes_open),
            updated_at=now - timedelta(minutes=minutes_open),
            **overrides,
        )

    return _make
