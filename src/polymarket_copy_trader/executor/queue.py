"""Durable hand-off between signal detection and execution.

Every signal is first recorded in the ledger's outbox table and then
offered to a bounded in-process queue. The execution worker marks a row
done once the orchestrator has handled it. Rows that never made it into
the queue (dropped, or left over from a previous run) are picked up by the
worker's idle sweep.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum

from polymarket_copy_trader.detector.models import Side, TradeSignal
from polymarket_copy_trader.executor.orchestrator import (
    ExecutionOrchestrator,
    ExecutionOutcome,
    ExecutionResult,
)
from polymarket_copy_trader.storage.ledger import LedgerStore
from polymarket_copy_trader.storage.repos import SignalOutboxDTO

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0
_POLL_SECONDS = 1.0


class QueueFullPolicy(str, Enum):
    BLOCK = "block"
    DROP = "drop"


def signal_to_outbox(signal: TradeSignal) -> SignalOutboxDTO:
    tx_hash, order_hash = signal.idempotency_key
    return SignalOutboxDTO(
        tx_hash=tx_hash,
        order_hash=order_hash,
        trader_address=signal.trader,
        side=signal.side.value,
        token_id=signal.token_id,
        amount=signal.amount,
        price=signal.price,
        block_number=signal.block_number,
    )


def outbox_to_signal(row: SignalOutboxDTO) -> TradeSignal:
    return TradeSignal(
        trader=row.trader_address,
        side=Side(row.side),
        token_id=row.token_id,
        amount=row.amount,
        price=row.price,
        transaction_hash=row.tx_hash,
        order_hash=row.order_hash,
        block_number=row.block_number,
    )


@dataclass
class OutboxStats:
    published: int = 0
    duplicates: int = 0
    dropped: int = 0
    requeued: int = 0


class SignalOutbox:
    """Outbox table plus bounded queue feeding the execution worker."""

    def __init__(
        self,
        ledger: LedgerStore,
        *,
        maxsize: int = DEFAULT_QUEUE_SIZE,
        policy: QueueFullPolicy = QueueFullPolicy.BLOCK,
    ) -> None:
        self._ledger = ledger
        self._queue: asyncio.Queue[TradeSignal] = asyncio.Queue(maxsize=maxsize)
        self._policy = QueueFullPolicy(policy)
        self._in_flight: set[tuple[str, str]] = set()
        self._stats = OutboxStats()

    @property
    def queue(self) -> asyncio.Queue[TradeSignal]:
        return self._queue

    @property
    def stats(self) -> OutboxStats:
        return self._stats

    async def publish(self, signal: TradeSignal) -> bool:
        """Record a signal and offer it to the worker.

        Returns:
            True if the signal was new and queued, False if it was a
            duplicate or dropped because the queue was full.
        """
        if not await self._ledger.enqueue_signal(signal_to_outbox(signal)):
            self._stats.duplicates += 1
            logger.debug("Signal %s:%s already in outbox", *signal.idempotency_key)
            return False
        self._stats.published += 1
        return await self._offer(signal, block=self._policy is QueueFullPolicy.BLOCK)

    async def _offer(self, signal: TradeSignal, *, block: bool) -> bool:
        key = signal.idempotency_key
        if key in self._in_flight:
            return False
        if block:
            self._in_flight.add(key)
            await self._queue.put(signal)
            return True
        try:
            self._queue.put_nowait(signal)
        except asyncio.QueueFull:
            self._stats.dropped += 1
            logger.warning(
                "Execution queue full (%d); signal %s:%s left pending in outbox",
                self._queue.maxsize,
                *key,
            )
            return False
        self._in_flight.add(key)
        return True

    async def requeue_pending(self, *, limit: int = 100) -> int:
        """Offer pending outbox rows that are not already queued."""
        requeued = 0
        for row in await self._ledger.pending_signals(limit=limit):
            if self._queue.full():
                break
            if await self._offer(outbox_to_signal(row), block=False):
                requeued += 1
        if requeued:
            self._stats.requeued += requeued
            logger.info("Re-queued %d pending outbox signals", requeued)
        return requeued

    async def complete(self, signal: TradeSignal) -> None:
        """Mark a handled signal done in the outbox."""
        tx_hash, order_hash = signal.idempotency_key
        try:
            await self._ledger.mark_signal_done(tx_hash, order_hash)
        finally:
            self._in_flight.discard(signal.idempotency_key)

    def release(self, signal: TradeSignal) -> None:
        """Forget an unhandled signal so a later sweep can offer it again."""
        self._in_flight.discard(signal.idempotency_key)


class ExecutionWorker:
    """Single consumer that runs queued signals through the orchestrator."""

    def __init__(
        self,
        *,
        outbox: SignalOutbox,
        orchestrator: ExecutionOrchestrator,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._outbox = outbox
        self._orchestrator = orchestrator
        self._sweep_interval = sweep_interval_seconds

    async def process(self, signal: TradeSignal) -> ExecutionResult | None:
        try:
            result = await self._orchestrator.execute(signal)
        except Exception as e:
            self._outbox.release(signal)
            logger.error("Execution of signal %s:%s errored: %s", *signal.idempotency_key, e)
            return None
        if result.outcome == ExecutionOutcome.UNRESOLVED:
            # Row stays pending until the trade reaches a terminal status.
            self._outbox.release(signal)
            return result
        await self._outbox.complete(signal)
        return result

    async def run(self, stop_event: asyncio.Event) -> None:
        queue = self._outbox.queue
        try:
            await self._outbox.requeue_pending()
        except Exception as e:
            logger.warning("Initial outbox sweep failed: %s", e)

        last_activity = time.monotonic()
        while not stop_event.is_set():
            try:
                signal = await asyncio.wait_for(queue.get(), timeout=_POLL_SECONDS)
            except TimeoutError:
                if time.monotonic() - last_activity >= self._sweep_interval:
                    last_activity = time.monotonic()
                    try:
                        await self._outbox.requeue_pending()
                    except Exception as e:
                        logger.warning("Outbox sweep failed: %s", e)
                continue

            try:
                await self.process(signal)
            except Exception as e:
                logger.error("Failed to complete signal %s:%s: %s", *signal.idempotency_key, e)
            finally:
                queue.task_done()
                last_activity = time.monotonic()
