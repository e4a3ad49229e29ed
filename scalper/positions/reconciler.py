"""
Position reconciliation against the exchange-reported position set
"""
import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from loguru import logger

from scalper.exchange.base import ExchangeClient, ExchangePosition
from scalper.positions.roe import calculate_roe
from scalper.types import Position, ScalperConfig, Side, SyncResult, utc_now


def import_position(
    remote: ExchangePosition,
    agent_id: str,
    config: ScalperConfig,
    now: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> Position:
    """Build a local record for a position opened outside this agent"""
    now = now or utc_now()
    size = abs(remote.size)
    leverage = remote.leverage if remote.leverage and remote.leverage > 0 else config.leverage
    if remote.margin and remote.margin > 0:
        margin = remote.margin
    else:
        margin = size * remote.entry_price / leverage if leverage > 0 else 0.0
    roe = calculate_roe(remote.unrealized_pnl, margin)
    current_price = remote.mark_price if remote.mark_price else remote.entry_price

    return Position(
        id=f"imported-{remote.symbol}-{int(now.timestamp() * 1000)}",
        agent_id=agent_id,
        user_id=user_id,
        symbol=remote.symbol,
        side=Side.LONG if remote.size > 0 else Side.SHORT,
        size=size,
        entry_price=remote.entry_price,
        current_price=current_price,
        leverage=leverage,
        margin_used=margin,
        unrealized_pnl=remote.unrealized_pnl,
        unrealized_roe=roe,
        highest_roe=roe,
        lowest_roe=roe,
        original_size=size,
        is_external=True,
        opened_at=now,
        updated_at=now,
    )


async def sync_positions(
    client: ExchangeClient,
    local_positions: Dict[str, Position],
    agent_id: str,
    config: ScalperConfig,
    timeout: Optional[float] = None,
    now: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> SyncResult:
    """
    Align ``local_positions`` (keyed by symbol) with the exchange

    Local positions still on the exchange are kept as they are. Local
    positions missing from the exchange are dropped as externally closed.
    Exchange positions with no local record are imported.

    The fetch is bounded by ``timeout``. If it fails, the result carries
    the error, every list is empty, and ``local_positions`` is untouched.
    """
    result = SyncResult()

    try:
        fetch = client.get_positions()
        remote_positions: List[ExchangePosition] = (
            await asyncio.wait_for(fetch, timeout) if timeout else await fetch
        )
    except Exception as e:
        logger.warning(f"Position sync failed for {agent_id}, keeping local state: {e!r}")
        result.error = str(e) or type(e).__name__
        return result

    remote_by_symbol: Dict[str, ExchangePosition] = {}
    for remote in remote_positions:
        if not remote.symbol or remote.size == 0:
            continue
        remote_by_symbol[remote.symbol] = remote

    # Work out every change first, then apply them
    for symbol in local_positions:
        if symbol in remote_by_symbol:
            result.synced.append(symbol)
        else:
            result.closed.append(symbol)

    imports: Dict[str, Position] = {}
    for symbol, remote in remote_by_symbol.items():
        if symbol in local_positions:
            continue
        imports[symbol] = import_position(remote, agent_id, config, now=now, user_id=user_id)
        result.imported.append(symbol)
        result.opened.append(symbol)

    for symbol in result.closed:
        del local_positions[symbol]
        logger.info(f"{symbol} no longer on exchange, removed (closed externally)")

    for symbol, position in imports.items():
        local_positions[symbol] = position
        logger.info(
            f"Imported external position {symbol} {position.side.value} size={position.size} "
            f"entry={position.entry_price} ROE={position.unrealized_roe:.2f}%"
        )

    return result
