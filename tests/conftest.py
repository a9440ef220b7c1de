"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
from eth_abi import encode

from polymarket_copy_trader.ingestor.decoder import ORDER_FILLED_TOPIC, ORDERS_MATCHED_TOPIC
from polymarket_copy_trader.ingestor.models import ChainLogEvent
from polymarket_copy_trader.storage.database import DatabaseManager
from polymarket_copy_trader.storage.ledger import LedgerStore

EXCHANGE_ADDRESS = "0x4bfb41d5b3570defd03c39a9a4d8de6bd8b8982e"
TRACKED_ADDRESS = "0x1111111111111111111111111111111111111111"
OTHER_ADDRESS = "0x2222222222222222222222222222222222222222"
TOKEN_ID = 52114319501245915516055106046884209969926127482827954674443846427813813222426


def address_topic(address: str) -> str:
    """Left-pad an address into a 32-byte topic."""
    return "0x" + "0" * 24 + address.lower().removeprefix("0x")


def hash32(n: int) -> str:
    return "0x" + f"{n:064x}"


@pytest.fixture
def sample_tracked_address() -> str:
    """Address used as the tracked trader in tests."""
    return TRACKED_ADDRESS


@pytest.fixture
def sample_other_address() -> str:
    """Address of an untracked counterparty."""
    return OTHER_ADDRESS


@pytest.fixture
def make_fill_log() -> Callable[..., ChainLogEvent]:
    """Factory for OrderFilled ChainLogEvents."""

    def _make(
        *,
        maker: str = TRACKED_ADDRESS,
        taker: str = OTHER_ADDRESS,
        maker_asset_id: int = 0,
        taker_asset_id: int = TOKEN_ID,
        maker_amount: int = 50_000_000,
        taker_amount: int = 100_000_000,
        fee: int = 0,
        order_hash: str = hash32(0xAA),
        tx_hash: str = hash32(0xBB),
        block_number: int = 100,
        log_index: int = 0,
    ) -> ChainLogEvent:
        return ChainLogEvent(
            address=EXCHANGE_ADDRESS,
            topics=(ORDER_FILLED_TOPIC, order_hash, address_topic(maker), address_topic(taker)),
            data=encode(
                ["uint256"] * 5,
                [maker_asset_id, taker_asset_id, maker_amount, taker_amount, fee],
            ),
            block_number=block_number,
            transaction_hash=tx_hash,
            log_index=log_index,
        )

    return _make


@pytest.fixture
def make_match_log() -> Callable[..., ChainLogEvent]:
    """Factory for OrdersMatched ChainLogEvents."""

    def _make(
        *,
        taker_order_maker: str = OTHER_ADDRESS,
        block_number: int = 100,
        log_index: int = 5,
    ) -> ChainLogEvent:
        return ChainLogEvent(
            address=EXCHANGE_ADDRESS,
            topics=(ORDERS_MATCHED_TOPIC, hash32(0xCC), address_topic(taker_order_maker)),
            data=encode(["uint256"] * 4, [0, TOKEN_ID, 10_000_000, 20_000_000]),
            block_number=block_number,
            transaction_hash=hash32(0xBB),
            log_index=log_index,
        )

    return _make


def _rpc_log(event: ChainLogEvent) -> dict[str, Any]:
    return {
        "address": event.address,
        "topics": list(event.topics),
        "data": "0x" + event.data.hex(),
        "blockNumber": hex(event.block_number),
        "transactionHash": event.transaction_hash,
        "logIndex": hex(event.log_index),
    }


@pytest.fixture
def to_rpc_log() -> Callable[[ChainLogEvent], dict[str, Any]]:
    """Render a ChainLogEvent the way eth_getLogs returns it."""
    return _rpc_log


@pytest.fixture
async def db_manager(tmp_path: Path) -> AsyncGenerator[DatabaseManager, None]:
    """File-backed SQLite database with the ledger schema."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/ledger.db")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
async def ledger(db_manager: DatabaseManager) -> LedgerStore:
    """Ledger store over the test database."""
    return LedgerStore(db_manager.get_async_session)
