"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Side(str, Enum):
    """Direction of a trade from the tracked trader's point of view."""

    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class TradeSignal:
    """A tracked trader's fill, normalized for copy execution.

    Attributes:
        trader: Lower-cased address of the tracked party.
        side: BUY when the trader paid cash for outcome tokens, else SELL.
        token_id: Outcome token id that changed hands.
        amount: Raw outcome-token amount (6-decimal base units).
        price: Outcome units received per cash unit paid, scaled by 1e6.
            BUY only; None for SELL.
        transaction_hash: Source transaction hash.
        order_hash: Source order hash.
        block_number: Block the fill was included in.
    """

    trader: str
    side: Side
    token_id: int
    amount: int
    price: int | None
    transaction_hash: str
    order_hash: str
    block_number: int

    @property
    def idempotency_key(self) -> tuple[str, str]:
        """Unique key of the logical fill: (transaction hash, order hash)."""
        return (self.transaction_hash.lower(), self.order_hash.lower())
