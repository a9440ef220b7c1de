"""Ledger schema: users, top traders, positions, trades, signal outbox.

Revision ID: 001_ledger
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("deposit_amount", sa.Numeric(30, 6), nullable=False),
        sa.Column("shares", sa.Numeric(30, 6), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("address"),
    )

    op.create_table(
        "top_traders",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("username", sa.String(128), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("total_pnl", sa.Numeric(24, 6), nullable=False),
        sa.Column("volume", sa.Numeric(24, 6), nullable=False),
        sa.Column("win_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("address"),
    )
    op.create_index("idx_top_traders_total_pnl", "top_traders", ["total_pnl"])

    op.create_table(
        "positions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("market_id", sa.String(80), nullable=True),
        sa.Column("outcome", sa.String(32), nullable=True),
        sa.Column("token_id", sa.String(80), nullable=False),
        sa.Column("amount", sa.Numeric(40, 6), nullable=False),
        sa.Column("avg_price", sa.Numeric(40, 6), nullable=False),
        sa.Column("current_price", sa.Numeric(40, 6), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_positions_status", "positions", ["status"])
    op.create_index("idx_positions_token_id", "positions", ["token_id"])

    op.create_table(
        "trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("position_id", sa.Integer(), nullable=False),
        sa.Column("trader_address", sa.String(42), nullable=False),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("amount", sa.Numeric(40, 6), nullable=False),
        sa.Column("price", sa.Numeric(40, 6), nullable=True),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("source_tx_hash", sa.String(66), nullable=False),
        sa.Column("source_order_hash", sa.String(66), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["position_id"], ["positions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_tx_hash", "source_order_hash", name="uq_trades_source_fill"),
    )
    op.create_index("idx_trades_status", "trades", ["status"])
    op.create_index("idx_trades_trader", "trades", ["trader_address"])

    op.create_table(
        "signal_outbox",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("order_hash", sa.String(66), nullable=False),
        sa.Column("trader_address", sa.String(42), nullable=False),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("token_id", sa.String(80), nullable=False),
        sa.Column("amount", sa.String(80), nullable=False),
        sa.Column("price", sa.String(80), nullable=True),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_hash", "order_hash", name="uq_signal_outbox_key"),
    )
    op.create_index("idx_signal_outbox_status", "signal_outbox", ["status"])


def downgrade() -> None:
    op.drop_index("idx_signal_outbox_status", table_name="signal_outbox")
    op.drop_table("signal_outbox")
    op.drop_index("idx_trades_trader", table_name="trades")
    op.drop_index("idx_trades_status", table_name="trades")
    op.drop_table("trades")
    op.drop_index("idx_positions_token_id", table_name="positions")
    op.drop_index("idx_positions_status", table_name="positions")
    op.drop_table("positions")
    op.drop_index("idx_top_traders_total_pnl", table_name="top_traders")
    op.drop_table("top_traders")
    op.drop_table("users")
