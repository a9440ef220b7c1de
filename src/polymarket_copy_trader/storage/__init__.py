"""Storage layer - Database schemas, repositories and the ledger store."""

from polymarket_copy_trader.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from polymarket_copy_trader.storage.ledger import LedgerStore
from polymarket_copy_trader.storage.models import (
    Base,
    PositionModel,
    SignalOutboxModel,
    TrackedTraderModel,
    TradeModel,
    UserModel,
)
from polymarket_copy_trader.storage.repos import (
    InvalidTradeTransition,
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

__all__ = [
    "Base",
    "DatabaseManager",
    "InvalidTradeTransition",
    "LedgerStore",
    "PositionDTO",
    "PositionModel",
    "PositionRepository",
    "SignalOutboxDTO",
    "SignalOutboxModel",
    "SignalOutboxRepository",
    "TrackedTraderDTO",
    "TrackedTraderModel",
    "TrackedTraderRepository",
    "TradeDTO",
    "TradeModel",
    "TradeRepository",
    "UserDTO",
    "UserModel",
    "UserRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
