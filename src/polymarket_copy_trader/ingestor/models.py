"""Data models for the ingestor module."""

from dataclasses import dataclass
from typing import Any

CASH_ASSET_ID = 0


def _to_hex(value: Any) -> str:
    """Normalize bytes / HexBytes / hex strings to lower-case 0x hex."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = str(value)
    if text.startswith(("0x", "0X")):
        text = text[2:]
    return bytes.fromhex(text)


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(str(value), 16) if str(value).startswith(("0x", "0X")) else int(value)


@dataclass(frozen=True)
class ChainLogEvent:
    """A raw log emitted by a watched exchange contract."""

    address: str
    topics: tuple[str, ...]
    data: bytes
    block_number: int
    transaction_hash: str
    log_index: int

    @classmethod
    def from_rpc(cls, log: Any) -> "ChainLogEvent":
        """Create a ChainLogEvent from an eth_getLogs entry.

        Accepts both web3 AttributeDicts (HexBytes values) and raw JSON-RPC
        dicts (hex strings).
        """
        return cls(
            address=_to_hex(log["address"]),
            topics=tuple(_to_hex(t) for t in log.get("topics", ())),
            data=_to_bytes(log.get("data", b"")),
            block_number=_to_int(log["blockNumber"]),
            transaction_hash=_to_hex(log["transactionHash"]),
            log_index=_to_int(log["logIndex"]),
        )


@dataclass(frozen=True)
class DecodedFillEvent:
    """An OrderFilled event.

    Asset id 0 is the cash leg (USDC); any other id is an outcome token.
    Amounts are raw 6-decimal base units.
    """

    order_hash: str
    maker: str
    taker: str
    maker_asset_id: int
    taker_asset_id: int
    maker_amount_filled: int
    taker_amount_filled: int
    fee: int
    transaction_hash: str
    block_number: int
    log_index: int
    contract_address: str


@dataclass(frozen=True)
class DecodedMatchEvent:
    """An OrdersMatched event (one taker order against several makers)."""

    taker_order_hash: str
    taker_order_maker: str
    maker_asset_id: int
    taker_asset_id: int
    maker_amount_filled: int
    taker_amount_filled: int
    transaction_hash: str
    block_number: int
    log_index: int
    contract_address: str
