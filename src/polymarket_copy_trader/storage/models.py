"""SQLAlchemy models for persistent storage.

This module defines the ledger schema: users, tracked traders, mirrored
positions, copy trades, and the signal outbox between detection and
execution.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

POSITION_OPEN = "open"
POSITION_CLOSED = "closed"

TRADE_PENDING = "pending"
TRADE_CONFIRMED = "confirmed"
TRADE_FAILED = "failed"
TRADE_TERMINAL_STATUSES = frozenset({TRADE_CONFIRMED, TRADE_FAILED})

OUTBOX_PENDING = "pending"
OUTBOX_DONE = "done"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UserModel(Base):
    """Depositors into the copy-trading pool."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False, unique=True)
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False, default=Decimal("0"))
    shares: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class TrackedTraderModel(Base):
    """Ranked traders ingested from the leaderboard."""

    __tablename__ = "top_traders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False, unique=True)
    username: Mapped[str | None] = mapped_column(String(128), nullable=True)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_pnl: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    volume: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False, default=Decimal("0"))
    win_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False, default=Decimal("0"))
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_top_traders_total_pnl", "total_pnl"),)


class PositionModel(Base):
    """Mirrored position opened for an executed signal."""

    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Not derivable from a fill log; filled in by reconciliation.
    market_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # uint256 outcome token id, stored as its decimal string.
    token_id: Mapped[str] = mapped_column(String(80), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(40, 6), nullable=False)
    avg_price: Mapped[Decimal] = mapped_column(Numeric(40, 6), nullable=False)
    current_price: Mapped[Decimal] = mapped_column(Numeric(40, 6), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=POSITION_OPEN)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_positions_status", "status"),
        Index("idx_positions_token_id", "token_id"),
    )


class TradeModel(Base):
    """One copy-execution attempt, keyed by the source fill."""

    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    position_id: Mapped[int] = mapped_column(Integer, ForeignKey("positions.id"), nullable=False)
    trader_address: Mapped[str] = mapped_column(String(42), nullable=False)
    side: Mapped[str] = mapped_column(String(4), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(40, 6), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(40, 6), nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TRADE_PENDING)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    source_tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    source_order_hash: Mapped[str] = mapped_column(String(66), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("source_tx_hash", "source_order_hash", name="uq_trades_source_fill"),
        Index("idx_trades_status", "status"),
        Index("idx_trades_trader", "trader_address"),
    )


class SignalOutboxModel(Base):
    """Durable hand-off between signal detection and execution."""

    __tablename__ = "signal_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    order_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    trader_address: Mapped[str] = mapped_column(String(42), nullable=False)
    side: Mapped[str] = mapped_column(String(4), nullable=False)
    token_id: Mapped[str] = mapped_column(String(80), nullable=False)
    # Raw uint256 values kept as decimal strings.
    amount: Mapped[str] = mapped_column(String(80), nullable=False)
    price: Mapped[str | None] = mapped_column(String(80), nullable=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=OUTBOX_PENDING)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tx_hash", "order_hash", name="uq_signal_outbox_key"),
        Index("idx_signal_outbox_status", "status"),
    )
