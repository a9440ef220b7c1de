"""Tests for the ledger store."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from polymarket_copy_trader.storage.database import DatabaseManager
from polymarket_copy_trader.storage.ledger import LedgerStore
from polymarket_copy_trader.storage.models import (
    POSITION_OPEN,
    TRADE_CONFIRMED,
    TRADE_FAILED,
    TRADE_PENDING,
    PositionModel,
)
from polymarket_copy_trader.storage.repos import TrackedTraderDTO


async def _open(
    ledger: LedgerStore,
    *,
    tx: str = "0xtx",
    order: str = "0xorder",
    price: Decimal | None = Decimal("2000000"),
):
    return await ledger.open_position_with_trade(
        token_id=555,
        amount=Decimal("10"),
        price=price,
        trader_address="0xtrader",
        side="BUY" if price is not None else "SELL",
        source_tx_hash=tx,
        source_order_hash=order,
    )


class TestLedgerStore:
    """Tests for LedgerStore."""

    @pytest.mark.asyncio
    async def test_open_position_with_trade(self, ledger: LedgerStore) -> None:
        position, trade = await _open(ledger)

        assert position.status == POSITION_OPEN
        assert position.avg_price == Decimal("2000000")
        assert trade.position_id == position.id
        assert trade.status == TRADE_PENDING

        found = await ledger.find_trade("0xTX", "0xORDER")
        assert found is not None
        assert found.id == trade.id

    @pytest.mark.asyncio
    async def test_sell_without_price(self, ledger: LedgerStore) -> None:
        position, trade = await _open(ledger, price=None)

        assert position.avg_price == Decimal("0")
        assert trade.price is None

    @pytest.mark.asyncio
    async def test_duplicate_fill_persists_nothing(
        self, ledger: LedgerStore, db_manager: DatabaseManager
    ) -> None:
        await _open(ledger)

        with pytest.raises(IntegrityError):
            await _open(ledger)

        async with db_manager.get_async_session() as session:
            count = await session.scalar(select(func.count()).select_from(PositionModel))
        assert count == 1

    @pytest.mark.asyncio
    async def test_update_trade_status(self, ledger: LedgerStore) -> None:
        _, trade = await _open(ledger)
        assert trade.id is not None

        assert await ledger.update_trade_status(trade.id, TRADE_CONFIRMED, tx_hash="0xabc")
        assert not await ledger.update_trade_status(trade.id, TRADE_FAILED, error="late")

        stored = await ledger.get_trade(trade.id)
        assert stored is not None
        assert stored.status == TRADE_CONFIRMED
        assert stored.tx_hash == "0xabc"

    @pytest.mark.asyncio
    async def test_top_traders(self, ledger: LedgerStore) -> None:
        stored = await ledger.upsert_traders(
            [
                TrackedTraderDTO(address="0xa", total_pnl=Decimal("10")),
                TrackedTraderDTO(address="0xb", total_pnl=Decimal("30")),
            ]
        )

        top = await ledger.top_traders(1)

        assert stored == 2
        assert [t.address for t in top] == ["0xb"]

    @pytest.mark.asyncio
    async def test_open_positions(self, ledger: LedgerStore) -> None:
        await _open(ledger, tx="0x1")
        await _open(ledger, tx="0x2")

        assert len(await ledger.open_positions()) == 2

    @pytest.mark.asyncio
    async def test_users(self, ledger: LedgerStore) -> None:
        user = await ledger.create_user("0xDepositor", deposit_amount=Decimal("250"))

        assert user.shares == Decimal("250")
        fetched = await ledger.get_user("0xdepositor")
        assert fetched is not None
        assert fetched.deposit_amount == Decimal("250")
