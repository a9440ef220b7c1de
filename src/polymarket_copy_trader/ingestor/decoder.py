"""Exchange log decoding.

Selects a decoder from a log's first topic. OrderFilled carries the order
hash, maker and taker as indexed topics and five uint256 words of data;
OrdersMatched carries the taker order hash and maker as topics and four
uint256 words.
"""

import logging

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from polymarket_copy_trader.ingestor.models import (
    ChainLogEvent,
    DecodedFillEvent,
    DecodedMatchEvent,
)

logger = logging.getLogger(__name__)

ORDER_FILLED_SIGNATURE = "OrderFilled(bytes32,address,address,uint256,uint256,uint256,uint256,uint256)"
ORDERS_MATCHED_SIGNATURE = "OrdersMatched(bytes32,address,uint256,uint256,uint256,uint256)"

ORDER_FILLED_TOPIC = Web3.to_hex(Web3.keccak(text=ORDER_FILLED_SIGNATURE)).lower()
ORDERS_MATCHED_TOPIC = Web3.to_hex(Web3.keccak(text=ORDERS_MATCHED_SIGNATURE)).lower()

WATCHED_TOPICS: tuple[str, ...] = (ORDER_FILLED_TOPIC, ORDERS_MATCHED_TOPIC)

_WORD = 32
_FILL_DATA_TYPES = ["uint256"] * 5
_MATCH_DATA_TYPES = ["uint256"] * 4


class DecodeError(Exception):
    """Raised when a log is unrecognized or malformed."""


def _topic_to_address(topic: str) -> str:
    """Extract the 20-byte address right-aligned in a 32-byte topic."""
    if len(topic) != 66:
        raise DecodeError(f"Topic is not 32 bytes: {topic}")
    return "0x" + topic[-40:].lower()


def _decode_words(types: list[str], data: bytes) -> tuple[int, ...]:
    expected = len(types) * _WORD
    if len(data) < expected:
        raise DecodeError(f"Log data too short: {len(data)} bytes, expected {expected}")
    try:
        return tuple(decode(types, data[:expected]))
    except DecodingError as e:
        raise DecodeError(f"Invalid log data: {e}") from e


def decode_fill(log: ChainLogEvent) -> DecodedFillEvent:
    """Decode an OrderFilled log."""
    if len(log.topics) < 4:
        raise DecodeError(f"OrderFilled log has {len(log.topics)} topics, expected 4")
    maker_asset, taker_asset, maker_amount, taker_amount, fee = _decode_words(
        _FILL_DATA_TYPES, log.data
    )
    return DecodedFillEvent(
        order_hash=log.topics[1],
        maker=_topic_to_address(log.topics[2]),
        taker=_topic_to_address(log.topics[3]),
        maker_asset_id=maker_asset,
        taker_asset_id=taker_asset,
        maker_amount_filled=maker_amount,
        taker_amount_filled=taker_amount,
        fee=fee,
        transaction_hash=log.transaction_hash,
        block_number=log.block_number,
        log_index=log.log_index,
        contract_address=log.address,
    )


def decode_match(log: ChainLogEvent) -> DecodedMatchEvent:
    """Decode an OrdersMatched log."""
    if len(log.topics) < 3:
        raise DecodeError(f"OrdersMatched log has {len(log.topics)} topics, expected 3")
    maker_asset, taker_asset, maker_amount, taker_amount = _decode_words(
        _MATCH_DATA_TYPES, log.data
    )
    return DecodedMatchEvent(
        taker_order_hash=log.topics[1],
        taker_order_maker=_topic_to_address(log.topics[2]),
        maker_asset_id=maker_asset,
        taker_asset_id=taker_asset,
        maker_amount_filled=maker_amount,
        taker_amount_filled=taker_amount,
        transaction_hash=log.transaction_hash,
        block_number=log.block_number,
        log_index=log.log_index,
        contract_address=log.address,
    )


def decode_log(log: ChainLogEvent) -> DecodedFillEvent | DecodedMatchEvent:
    """Decode a watched exchange log.

    Raises:
        DecodeError: If the first topic is unknown or the payload is malformed.
    """
    if not log.topics:
        raise DecodeError("Log has no topics")
    topic0 = log.topics[0]
    if topic0 == ORDER_FILLED_TOPIC:
        return decode_fill(log)
    if topic0 == ORDERS_MATCHED_TOPIC:
        return decode_match(log)
    raise DecodeError(f"Unrecognized event topic: {topic0}")
