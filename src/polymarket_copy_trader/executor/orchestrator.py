"""Copy-trade execution.

For each signal: skip if a trade for the same source fill exists, book an
open Position and a pending Trade in one transaction, submit the mirrored
order, then move the trade to confirmed or failed. Failed submissions are
never retried automatically. A trade left pending by an interrupted run is
reported as unresolved and is not submitted again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from sqlalchemy.exc import IntegrityError

from polymarket_copy_trader.detector.models import TradeSignal
from polymarket_copy_trader.executor.backend import ExecutionBackend, OrderRequest
from polymarket_copy_trader.storage.ledger import LedgerStore
from polymarket_copy_trader.storage.models import TRADE_CONFIRMED, TRADE_FAILED, TRADE_PENDING
from polymarket_copy_trader.storage.repos import TradeDTO

logger = logging.getLogger(__name__)


class ExecutionOutcome(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    UNRESOLVED = "unresolved"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ExecutionResult:
    outcome: ExecutionOutcome
    trade_id: int | None = None
    position_id: int | None = None
    tx_hash: str | None = None
    error: str | None = None


@dataclass
class ExecutionStats:
    confirmed: int = 0
    failed: int = 0
    duplicates: int = 0
    unresolved: int = 0
    skipped: int = 0


def mirrored_size(amount: int, multiplier: float) -> Decimal:
    """Source amount scaled by the copy-trade multiplier."""
    return Decimal(amount) * Decimal(str(multiplier))


class ExecutionOrchestrator:
    """Drives one signal through the trade state machine."""

    def __init__(
        self,
        *,
        ledger: LedgerStore,
        backend: ExecutionBackend,
        multiplier: float,
    ) -> None:
        if not 0 < multiplier <= 1:
            raise ValueError("multiplier must be in (0, 1]")
        self._ledger = ledger
        self._backend = backend
        self._multiplier = multiplier
        self._stats = ExecutionStats()

    @property
    def stats(self) -> ExecutionStats:
        return self._stats

    async def execute(self, signal: TradeSignal) -> ExecutionResult:
        tx_hash, order_hash = signal.idempotency_key

        existing = await self._ledger.find_trade(tx_hash, order_hash)
        if existing is not None:
            return self._existing_trade_result(existing)

        size = mirrored_size(signal.amount, self._multiplier)
        if size <= 0:
            self._stats.skipped += 1
            logger.info("Skipping signal %s:%s with non-positive mirrored size", tx_hash, order_hash)
            return ExecutionResult(ExecutionOutcome.SKIPPED)

        price = Decimal(signal.price) if signal.price is not None else None
        try:
            position, trade = await self._ledger.open_position_with_trade(
                token_id=signal.token_id,
                amount=size,
                price=price,
                trader_address=signal.trader,
                side=signal.side.value,
                source_tx_hash=tx_hash,
                source_order_hash=order_hash,
            )
        except IntegrityError:
            # Another delivery of the same fill won the insert.
            existing = await self._ledger.find_trade(tx_hash, order_hash)
            if existing is None:
                raise
            return self._existing_trade_result(existing)
        if trade.id is None:
            raise RuntimeError("Trade insert returned no primary key")
        trade_id = trade.id

        order = OrderRequest(
            token_id=signal.token_id,
            side=signal.side,
            size=size,
            price=signal.price,
            client_ref=f"{tx_hash}:{order_hash}",
        )
        try:
            result_hash = await self._backend.submit(order)
        except Exception as e:
            await self._ledger.update_trade_status(trade_id, TRADE_FAILED, error=str(e))
            self._stats.failed += 1
            logger.error(
                "Copy trade %d failed (trader=%s token=%d %s size=%s): %s",
                trade_id,
                signal.trader,
                signal.token_id,
                signal.side.value,
                size,
                e,
            )
            return ExecutionResult(
                ExecutionOutcome.FAILED, trade_id=trade_id, position_id=position.id, error=str(e)
            )

        try:
            await self._ledger.update_trade_status(trade_id, TRADE_CONFIRMED, tx_hash=result_hash)
        except Exception as e:
            logger.error(
                "Copy trade %d was submitted as tx=%s but could not be marked confirmed: %s",
                trade_id,
                result_hash,
                e,
            )
            raise
        self._stats.confirmed += 1
        logger.info(
            "Copy trade %d confirmed: %s token=%d size=%s tx=%s",
            trade_id,
            signal.side.value,
            signal.token_id,
            size,
            result_hash,
        )
        return ExecutionResult(
            ExecutionOutcome.CONFIRMED, trade_id=trade_id, position_id=position.id, tx_hash=result_hash
        )

    def _existing_trade_result(self, existing: TradeDTO) -> ExecutionResult:
        if existing.status == TRADE_PENDING:
            # Submitted or in flight without a recorded outcome; never resubmit.
            self._stats.unresolved += 1
            logger.warning(
                "Trade %s for %s:%s is still pending; leaving it for reconciliation",
                existing.id,
                existing.source_tx_hash,
                existing.source_order_hash,
            )
            return ExecutionResult(
                ExecutionOutcome.UNRESOLVED, trade_id=existing.id, position_id=existing.position_id
            )
        self._stats.duplicates += 1
        logger.debug(
            "Signal %s:%s already has trade %s",
            existing.source_tx_hash,
            existing.source_order_hash,
            existing.id,
        )
        return ExecutionResult(
            ExecutionOutcome.DUPLICATE, trade_id=existing.id, position_id=existing.position_id
        )
