"""Data ingestion layer - Chain log watching, decoding and trader rankings."""

from polymarket_copy_trader.ingestor.block_stream import NewHeadsStream, SubscriptionError
from polymarket_copy_trader.ingestor.chain import PolygonClient, PolygonClientError, RPCError
from polymarket_copy_trader.ingestor.decoder import (
    ORDER_FILLED_TOPIC,
    ORDERS_MATCHED_TOPIC,
    DecodeError,
    decode_log,
)
from polymarket_copy_trader.ingestor.leaderboard import (
    LeaderboardClient,
    LeaderboardError,
    LeaderboardIngestor,
)
from polymarket_copy_trader.ingestor.models import (
    ChainLogEvent,
    DecodedFillEvent,
    DecodedMatchEvent,
)

__all__ = [
    "ChainLogEvent",
    "DecodeError",
    "DecodedFillEvent",
    "DecodedMatchEvent",
    "LeaderboardClient",
    "LeaderboardError",
    "LeaderboardIngestor",
    "NewHeadsStream",
    "ORDERS_MATCHED_TOPIC",
    "ORDER_FILLED_TOPIC",
    "PolygonClient",
    "PolygonClientError",
    "RPCError",
    "SubscriptionError",
    "decode_log",
]
