"""Ledger store: the single authority for trader, position and trade state.

Each method runs in its own transactional session. Position and Trade
creation share one session so that both rows commit together or not at all.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from typing import TYPE_CHECKING

from polymarket_copy_trader.storage.models import POSITION_OPEN
from polymarket_copy_trader.storage.repos import (
    PositionDTO,
    PositionRepository,
    SignalOutboxDTO,
    SignalOutboxRepository,
    TrackedTraderDTO,
    TrackedTraderRepository,
    TradeDTO,
    TradeRepository,
    UserDTO,
    UserRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager["AsyncSession"]]


class LedgerStore:
    """Facade over the repositories used by the pipeline components."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    # -- tracked traders -------------------------------------------------

    async def top_traders(self, limit: int) -> list[TrackedTraderDTO]:
        async with self._session_scope() as session:
            return await TrackedTraderRepository(session).top_by_pnl(limit)

    async def upsert_traders(self, traders: list[TrackedTraderDTO]) -> int:
        async with self._session_scope() as session:
            repo = TrackedTraderRepository(session)
            for dto in traders:
                await repo.upsert(dto)
        return len(traders)

    # -- positions and trades ---------------------------------------------

    async def open_positions(self) -> list[PositionDTO]:
        async with self._session_scope() as session:
            return await PositionRepository(session).list_open()

    async def find_trade(self, source_tx_hash: str, source_order_hash: str) -> TradeDTO | None:
        async with self._session_scope() as session:
            return await TradeRepository(session).get_by_source(source_tx_hash, source_order_hash)

    async def get_trade(self, trade_id: int) -> TradeDTO | None:
        async with self._session_scope() as session:
            return await TradeRepository(session).get(trade_id)

    async def open_position_with_trade(
        self,
        *,
        token_id: int,
        amount: Decimal,
        price: Decimal | None,
        trader_address: str,
        side: str,
        source_tx_hash: str,
        source_order_hash: str,
    ) -> tuple[PositionDTO, TradeDTO]:
        """Create an open Position and its pending Trade atomically.

        Raises:
            sqlalchemy.exc.IntegrityError: If a trade for the same source
                fill already exists. Nothing is persisted in that case.
        """
        avg_price = price if price is not None else Decimal("0")
        async with self._session_scope() as session:
            position = await PositionRepository(session).insert(
                PositionDTO(
                    token_id=token_id,
                    amount=amount,
                    avg_price=avg_price,
                    current_price=avg_price,
                    status=POSITION_OPEN,
                )
            )
            if position.id is None:
                raise RuntimeError("Position insert returned no primary key")
            trade = await TradeRepository(session).insert(
                TradeDTO(
                    position_id=position.id,
                    trader_address=trader_address,
                    side=side,
                    amount=amount,
                    price=price,
                    source_tx_hash=source_tx_hash,
                    source_order_hash=source_order_hash,
                )
            )
        return position, trade

    async def update_trade_status(
        self,
        trade_id: int,
        status: str,
        *,
        tx_hash: str | None = None,
        error: str | None = None,
    ) -> bool:
        async with self._session_scope() as session:
            return await TradeRepository(session).update_status(
                trade_id, status, tx_hash=tx_hash, error=error
            )

    # -- signal outbox ------------------------------------------------------

    async def enqueue_signal(self, dto: SignalOutboxDTO) -> bool:
        async with self._session_scope() as session:
            return await SignalOutboxRepository(session).enqueue(dto)

    async def pending_signals(self, *, limit: int = 100) -> list[SignalOutboxDTO]:
        async with self._session_scope() as session:
            return await SignalOutboxRepository(session).list_pending(limit=limit)

    async def mark_signal_done(self, tx_hash: str, order_hash: str) -> bool:
        async with self._session_scope() as session:
            return await SignalOutboxRepository(session).mark_done(tx_hash, order_hash)

    # -- users --------------------------------------------------------------

    async def create_user(self, address: str, *, deposit_amount: Decimal = Decimal("0")) -> UserDTO:
        async with self._session_scope() as session:
            return await UserRepository(session).create(
                UserDTO(address=address, deposit_amount=deposit_amount, shares=deposit_amount)
            )

    async def get_user(self, address: str) -> UserDTO | None:
        async with self._session_scope() as session:
            return await UserRepository(session).get(address)
