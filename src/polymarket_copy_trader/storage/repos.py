"""Repository pattern implementations for data access.

This module provides data access abstractions for the ledger: users,
tracked traders, positions, copy trades, and the signal outbox.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from polymarket_copy_trader.storage.models import (
    OUTBOX_DONE,
    OUTBOX_PENDING,
    POSITION_OPEN,
    TRADE_PENDING,
    TRADE_TERMINAL_STATUSES,
    PositionModel,
    SignalOutboxModel,
    TrackedTraderModel,
    TradeModel,
    UserModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class InvalidTradeTransition(ValueError):
    """Raised when a trade status update targets a non-terminal status."""


def _dialect_insert(session: AsyncSession, model: type[Any]) -> Any:
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


@dataclass
class UserDTO:
    """Data transfer object for pool depositors."""

    address: str
    deposit_amount: Decimal
    shares: Decimal
    id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        return cls(
            id=model.id,
            address=model.address,
            deposit_amount=model.deposit_amount,
            shares=model.shares,
            created_at=model.created_at,
        )


class UserRepository:
    """Repository for pool depositors."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, address: str) -> UserDTO | None:
        result = await self.session.execute(
            select(UserModel).where(UserModel.address == address.lower())
        )
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def create(self, dto: UserDTO) -> UserDTO:
        model = UserModel(
            address=dto.address.lower(),
            deposit_amount=dto.deposit_amount,
            shares=dto.shares,
        )
        self.session.add(model)
        await self.session.flush()
        return UserDTO.from_model(model)

    async def update_balance(self, address: str, *, deposit_amount: Decimal, shares: Decimal) -> bool:
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.address == address.lower())
            .values(deposit_amount=deposit_amount, shares=shares)
        )
        return bool(result.rowcount)

    async def list_all(self) -> list[UserDTO]:
        result = await self.session.execute(select(UserModel).order_by(UserModel.id))
        return [UserDTO.from_model(m) for m in result.scalars().all()]


@dataclass
class TrackedTraderDTO:
    """Data transfer object for ranked traders."""

    address: str
    total_pnl: Decimal
    volume: Decimal = Decimal("0")
    win_rate: Decimal = Decimal("0")
    username: str | None = None
    rank: int | None = None
    last_updated: datetime | None = None

    @classmethod
    def from_model(cls, model: TrackedTraderModel) -> TrackedTraderDTO:
        return cls(
            address=model.address,
            total_pnl=model.total_pnl,
            volume=model.volume,
            win_rate=model.win_rate,
            username=model.username,
            rank=model.rank,
            last_updated=model.last_updated,
        )


class TrackedTraderRepository:
    """Repository for leaderboard-ranked traders."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, address: str) -> TrackedTraderDTO | None:
        result = await self.session.execute(
            select(TrackedTraderModel).where(TrackedTraderModel.address == address.lower())
        )
        model = result.scalar_one_or_none()
        return TrackedTraderDTO.from_model(model) if model else None

    async def upsert(self, dto: TrackedTraderDTO) -> None:
        """Insert or refresh a trader keyed by address."""
        now = datetime.now(UTC)
        values = {
            "address": dto.address.lower(),
            "username": dto.username,
            "rank": dto.rank,
            "total_pnl": dto.total_pnl,
            "volume": dto.volume,
            "win_rate": dto.win_rate,
            "last_updated": now,
        }
        stmt = _dialect_insert(self.session, TrackedTraderModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["address"],
            set_={
                "username": stmt.excluded.username,
                "rank": stmt.excluded.rank,
                "total_pnl": stmt.excluded.total_pnl,
                "volume": stmt.excluded.volume,
                "win_rate": stmt.excluded.win_rate,
                "last_updated": stmt.excluded.last_updated,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def top_by_pnl(self, limit: int) -> list[TrackedTraderDTO]:
        result = await self.session.execute(
            select(TrackedTraderModel)
            .order_by(TrackedTraderModel.total_pnl.desc(), TrackedTraderModel.address)
            .limit(limit)
        )
        return [TrackedTraderDTO.from_model(m) for m in result.scalars().all()]


@dataclass
class PositionDTO:
    """Data transfer object for mirrored positions."""

    token_id: int
    amount: Decimal
    avg_price: Decimal
    current_price: Decimal
    status: str = POSITION_OPEN
    market_id: str | None = None
    outcome: str | None = None
    id: int | None = None
    created_at: datetime | None = None
    closed_at: datetime | None = None

    @classmethod
    def from_model(cls, model: PositionModel) -> PositionDTO:
        return cls(
            id=model.id,
            market_id=model.market_id,
            outcome=model.outcome,
            token_id=int(model.token_id),
            amount=model.amount,
            avg_price=model.avg_price,
            current_price=model.current_price,
            status=model.status,
            created_at=model.created_at,
            closed_at=model.closed_at,
        )


class PositionRepository:
    """Repository for mirrored positions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, position_id: int) -> PositionDTO | None:
        model = await self.session.get(PositionModel, position_id)
        return PositionDTO.from_model(model) if model else None

    async def insert(self, dto: PositionDTO) -> PositionDTO:
        model = PositionModel(
            market_id=dto.market_id,
            outcome=dto.outcome,
            token_id=str(dto.token_id),
            amount=dto.amount,
            avg_price=dto.avg_price,
            current_price=dto.current_price,
            status=dto.status,
        )
        self.session.add(model)
        await self.session.flush()
        return PositionDTO.from_model(model)

    async def list_open(self) -> list[PositionDTO]:
        result = await self.session.execute(
            select(PositionModel)
            .where(PositionModel.status == POSITION_OPEN)
            .order_by(PositionModel.created_at.desc(), PositionModel.id.desc())
        )
        return [PositionDTO.from_model(m) for m in result.scalars().all()]


@dataclass
class TradeDTO:
    """Data transfer object for copy trades."""

    position_id: int
    trader_address: str
    side: str
    amount: Decimal
    price: Decimal | None
    source_tx_hash: str
    source_order_hash: str
    status: str = TRADE_PENDING
    tx_hash: str | None = None
    error: str | None = None
    id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TradeModel) -> TradeDTO:
        return cls(
            id=model.id,
            position_id=model.position_id,
            trader_address=model.trader_address,
            side=model.side,
            amount=model.amount,
            price=model.price,
            source_tx_hash=model.source_tx_hash,
            source_order_hash=model.source_order_hash,
            status=model.status,
            tx_hash=model.tx_hash,
            error=model.error,
            created_at=model.created_at,
        )


class TradeRepository:
    """Repository for copy trades."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, trade_id: int) -> TradeDTO | None:
        model = await self.session.get(TradeModel, trade_id)
        return TradeDTO.from_model(model) if model else None

    async def get_by_source(self, source_tx_hash: str, source_order_hash: str) -> TradeDTO | None:
        result = await self.session.execute(
            select(TradeModel).where(
                (TradeModel.source_tx_hash == source_tx_hash.lower())
                & (TradeModel.source_order_hash == source_order_hash.lower())
            )
        )
        model = result.scalar_one_or_none()
        return TradeDTO.from_model(model) if model else None

    async def insert(self, dto: TradeDTO) -> TradeDTO:
        model = TradeModel(
            position_id=dto.position_id,
            trader_address=dto.trader_address.lower(),
            side=dto.side,
            amount=dto.amount,
            price=dto.price,
            status=dto.status,
            tx_hash=dto.tx_hash,
            source_tx_hash=dto.source_tx_hash.lower(),
            source_order_hash=dto.source_order_hash.lower(),
        )
        self.session.add(model)
        await self.session.flush()
        return TradeDTO.from_model(model)

    async def update_status(
        self,
        trade_id: int,
        status: str,
        *,
        tx_hash: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Move a pending trade to a terminal status.

        The update only matches rows still in ``pending``, so a trade that
        already reached ``confirmed`` or ``failed`` is left untouched.

        Returns:
            True if the row transitioned, False if it was already terminal
            or does not exist.

        Raises:
            InvalidTradeTransition: If ``status`` is not a terminal status.
        """
        if status not in TRADE_TERMINAL_STATUSES:
            raise InvalidTradeTransition(f"Trade status can only move to confirmed/failed, got {status!r}")
        result = await self.session.execute(
            update(TradeModel)
            .where((TradeModel.id == trade_id) & (TradeModel.status == TRADE_PENDING))
            .values(status=status, tx_hash=tx_hash, error=error, updated_at=datetime.now(UTC))
        )
        return bool(result.rowcount)

    async def list_by_status(self, status: str, *, limit: int = 100) -> list[TradeDTO]:
        result = await self.session.execute(
            select(TradeModel).where(TradeModel.status == status).order_by(TradeModel.id).limit(limit)
        )
        return [TradeDTO.from_model(m) for m in result.scalars().all()]


@dataclass
class SignalOutboxDTO:
    """Data transfer object for queued trade signals."""

    tx_hash: str
    order_hash: str
    trader_address: str
    side: str
    token_id: int
    amount: int
    price: int | None
    block_number: int
    status: str = OUTBOX_PENDING
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: SignalOutboxModel) -> SignalOutboxDTO:
        return cls(
            tx_hash=model.tx_hash,
            order_hash=model.order_hash,
            trader_address=model.trader_address,
            side=model.side,
            token_id=int(model.token_id),
            amount=int(model.amount),
            price=int(model.price) if model.price is not None else None,
            block_number=model.block_number,
            status=model.status,
            created_at=model.created_at,
        )


class SignalOutboxRepository:
    """Repository for the durable signal outbox."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def enqueue(self, dto: SignalOutboxDTO) -> bool:
        """Record a signal once per (tx_hash, order_hash).

        Returns:
            True if the row was inserted, False if it already existed.
        """
        values = {
            "tx_hash": dto.tx_hash.lower(),
            "order_hash": dto.order_hash.lower(),
            "trader_address": dto.trader_address.lower(),
            "side": dto.side,
            "token_id": str(dto.token_id),
            "amount": str(dto.amount),
            "price": str(dto.price) if dto.price is not None else None,
            "block_number": dto.block_number,
            "status": OUTBOX_PENDING,
            "created_at": datetime.now(UTC),
        }
        stmt = _dialect_insert(self.session, SignalOutboxModel).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=["tx_hash", "order_hash"])
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def list_pending(self, *, limit: int = 100) -> list[SignalOutboxDTO]:
        result = await self.session.execute(
            select(SignalOutboxModel)
            .where(SignalOutboxModel.status == OUTBOX_PENDING)
            .order_by(SignalOutboxModel.id)
            .limit(limit)
        )
        return [SignalOutboxDTO.from_model(m) for m in result.scalars().all()]

    async def mark_done(self, tx_hash: str, order_hash: str) -> bool:
        result = await self.session.execute(
            update(SignalOutboxModel)
            .where(
                (SignalOutboxModel.tx_hash == tx_hash.lower())
                & (SignalOutboxModel.order_hash == order_hash.lower())
                & (SignalOutboxModel.status == OUTBOX_PENDING)
            )
            .values(status=OUTBOX_DONE, processed_at=datetime.now(UTC))
        )
        return bool(result.rowcount)
