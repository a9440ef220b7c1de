"""Execution backends for mirrored orders.

The live backend signs a fill-or-kill market order with py-clob-client and
posts it to the Polymarket CLOB. Both calls are blocking HTTP and run on a
worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Protocol

from py_clob_client.client import ClobClient as BaseClobClient
from py_clob_client.clob_types import ApiCreds, MarketOrderArgs, OrderType
from py_clob_client.order_builder.constants import BUY, SELL
from web3 import Web3

from polymarket_copy_trader.config import PolymarketSettings
from polymarket_copy_trader.detector.models import Side

logger = logging.getLogger(__name__)

TOKEN_DECIMALS = Decimal("1000000")
_CENT = Decimal("0.01")


class ExecutionError(Exception):
    """Raised when the execution backend rejects or times out an order."""


@dataclass(frozen=True)
class OrderRequest:
    """A mirrored order.

    Attributes:
        token_id: Outcome token to trade.
        side: BUY or SELL.
        size: Outcome-token amount in raw 6-decimal units.
        price: Signal price (outcome units per cash unit, scaled 1e6); BUY only.
        client_ref: Stable reference of the source fill.
    """

    token_id: int
    side: Side
    size: Decimal
    price: int | None
    client_ref: str

    def clob_amount(self) -> Decimal:
        """Amount in the unit py-clob-client market orders expect.

        BUY orders are sized in USDC, SELL orders in shares.

        Raises:
            ExecutionError: If a BUY has no usable price.
        """
        if self.side is Side.SELL:
            return (self.size / TOKEN_DECIMALS).quantize(_CENT, rounding=ROUND_DOWN)
        if not self.price:
            raise ExecutionError("BUY order requires a price to size the USDC amount")
        # size / (price / 1e6) raw cash units, then / 1e6 for USDC.
        return (self.size / Decimal(self.price)).quantize(_CENT, rounding=ROUND_DOWN)


class ExecutionBackend(Protocol):
    async def submit(self, order: OrderRequest) -> str:
        """Submit an order and return its transaction identifier."""
        ...


class ClobExecutionBackend:
    """Live backend posting FOK market orders to the CLOB."""

    def __init__(self, client: BaseClobClient, *, timeout_seconds: float = 15.0) -> None:
        self._client = client
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(cls, settings: PolymarketSettings) -> ClobExecutionBackend:
        creds: ApiCreds | None = None
        if settings.clob_api_key and settings.clob_api_secret and settings.clob_api_passphrase:
            creds = ApiCreds(
                api_key=settings.clob_api_key.get_secret_value(),
                api_secret=settings.clob_api_secret.get_secret_value(),
                api_passphrase=settings.clob_api_passphrase.get_secret_value(),
            )
        client = BaseClobClient(
            settings.clob_host,
            chain_id=settings.clob_chain_id,
            key=settings.clob_private_key.get_secret_value() if settings.clob_private_key else None,
            creds=creds,
            signature_type=settings.clob_signature_type,
            funder=settings.clob_funder,
        )
        logger.info("Initialized CLOB execution backend host=%s", settings.clob_host)
        return cls(client, timeout_seconds=settings.order_timeout_seconds)

    def _place(self, order: OrderRequest, amount: Decimal) -> Any:
        args = MarketOrderArgs(
            token_id=str(order.token_id),
            amount=float(amount),
            side=BUY if order.side is Side.BUY else SELL,
            order_type=OrderType.FOK,
        )
        signed = self._client.create_market_order(args)
        return self._client.post_order(signed, OrderType.FOK)

    async def submit(self, order: OrderRequest) -> str:
        amount = order.clob_amount()
        if amount <= 0:
            raise ExecutionError(f"Order amount rounds to zero ({order.size} raw units)")

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._place, order, amount), timeout=self._timeout
            )
        except TimeoutError as e:
            raise ExecutionError(f"Order submission timed out after {self._timeout}s") from e
        except Exception as e:
            raise ExecutionError(f"Order submission failed: {e}") from e

        if not isinstance(response, dict):
            raise ExecutionError(f"Unexpected order response: {response!r}")
        if response.get("success") is False or response.get("errorMsg"):
            raise ExecutionError(f"Order rejected: {response.get('errorMsg') or response}")

        tx_hashes = response.get("transactionsHashes") or []
        identifier = tx_hashes[0] if tx_hashes else response.get("orderID")
        if not identifier:
            raise ExecutionError(f"Order response carried no identifier: {response!r}")
        return str(identifier)


class DryRunExecutionBackend:
    """Backend that accepts every order and returns a deterministic fake hash."""

    def __init__(self) -> None:
        self.submitted: list[OrderRequest] = []

    async def submit(self, order: OrderRequest) -> str:
        self.submitted.append(order)
        tx_hash = Web3.to_hex(
            Web3.keccak(text=f"dry-run:{order.client_ref}:{order.token_id}:{order.side.value}:{order.size}")
        )
        logger.info(
            "[dry-run] %s token=%d size=%s -> %s", order.side.value, order.token_id, order.size, tx_hash
        )
        return tx_hash
