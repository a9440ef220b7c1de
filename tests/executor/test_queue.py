"""Tests for the signal outbox and execution worker."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from polymarket_copy_trader.detector.models import Side, TradeSignal
from polymarket_copy_trader.executor.backend import DryRunExecutionBackend
from polymarket_copy_trader.executor.orchestrator import (
    ExecutionOrchestrator,
    ExecutionOutcome,
)
from polymarket_copy_trader.executor.queue import (
    ExecutionWorker,
    QueueFullPolicy,
    SignalOutbox,
    outbox_to_signal,
    signal_to_outbox,
)
from polymarket_copy_trader.storage.ledger import LedgerStore


def _signal(n: int = 1) -> TradeSignal:
    return TradeSignal(
        trader="0x1111111111111111111111111111111111111111",
        side=Side.BUY,
        token_id=2**200 + n,
        amount=10_000_000,
        price=1_500_000,
        transaction_hash=f"0xtx{n}",
        order_hash=f"0xorder{n}",
        block_number=500 + n,
    )


class TestOutboxConversion:
    """Tests for signal/outbox row conversion."""

    def test_round_trip(self) -> None:
        signal = _signal()
        assert outbox_to_signal(signal_to_outbox(signal)) == signal

    def test_sell_without_price(self) -> None:
        signal = TradeSignal(
            trader="0xabc",
            side=Side.SELL,
            token_id=1,
            amount=5,
            price=None,
            transaction_hash="0xt",
            order_hash="0xo",
            block_number=1,
        )
        row = signal_to_outbox(signal)
        assert row.side == "SELL"
        assert row.price is None


class TestSignalOutbox:
    """Tests for SignalOutbox."""

    @pytest.mark.asyncio
    async def test_publish_records_and_queues(self, ledger: LedgerStore) -> None:
        outbox = SignalOutbox(ledger, maxsize=10)

        assert await outbox.publish(_signal()) is True

        assert outbox.queue.qsize() == 1
        pending = await ledger.pending_signals()
        assert [p.tx_hash for p in pending] == ["0xtx1"]

    @pytest.mark.asyncio
    async def test_duplicate_publish(self, ledger: LedgerStore) -> None:
        outbox = SignalOutbox(ledger, maxsize=10)

        await outbox.publish(_signal())
        assert await outbox.publish(_signal()) is False

        assert outbox.queue.qsize() == 1
        assert outbox.stats.duplicates == 1

    @pytest.mark.asyncio
    async def test_drop_policy_keeps_row_pending(self, ledger: LedgerStore) -> None:
        outbox = SignalOutbox(ledger, maxsize=1, policy=QueueFullPolicy.DROP)

        assert await outbox.publish(_signal(1)) is True
        assert await outbox.publish(_signal(2)) is False

        assert outbox.queue.qsize() == 1
        assert outbox.stats.dropped == 1
        assert len(await ledger.pending_signals()) == 2

    @pytest.mark.asyncio
    async def test_block_policy_waits_for_space(self, ledger: LedgerStore) -> None:
        outbox = SignalOutbox(ledger, maxsize=1, policy=QueueFullPolicy.BLOCK)
        await outbox.publish(_signal(1))

        blocked = asyncio.create_task(outbox.publish(_signal(2)))
        await asyncio.sleep(0.05)
        assert not blocked.done()

        outbox.queue.get_nowait()
        assert await asyncio.wait_for(blocked, timeout=1) is True

    @pytest.mark.asyncio
    async def test_requeue_pending_skips_in_flight(self, ledger: LedgerStore) -> None:
        outbox = SignalOutbox(ledger, maxsize=10, policy=QueueFullPolicy.DROP)
        await outbox.publish(_signal(1))
        await ledger.enqueue_signal(signal_to_outbox(_signal(2)))

        requeued = await outbox.requeue_pending()

        assert requeued == 1
        assert outbox.queue.qsize() == 2

    @pytest.mark.asyncio
    async def test_complete_marks_done(self, ledger: LedgerStore) -> None:
        outbox = SignalOutbox(ledger, maxsize=10)
        signal = _signal()
        await outbox.publish(signal)
        outbox.queue.get_nowait()

        await outbox.complete(signal)

        assert await ledger.pending_signals() == []
        assert await outbox.requeue_pending() == 0

    @pytest.mark.asyncio
    async def test_release_allows_requeue(self, ledger: LedgerStore) -> None:
        outbox = SignalOutbox(ledger, maxsize=10)
        signal = _signal()
        await outbox.publish(signal)
        outbox.queue.get_nowait()

        outbox.release(signal)

        assert await outbox.requeue_pending() == 1


class TestExecutionWorker:
    """Tests for ExecutionWorker."""

    @pytest.mark.asyncio
    async def test_process_completes_signal(self, ledger: LedgerStore) -> None:
        outbox = SignalOutbox(ledger, maxsize=10)
        orchestrator = ExecutionOrchestrator(
            ledger=ledger, backend=DryRunExecutionBackend(), multiplier=0.1
        )
        worker = ExecutionWorker(outbox=outbox, orchestrator=orchestrator)
        signal = _signal()
        await outbox.publish(signal)

        result = await worker.process(outbox.queue.get_nowait())

        assert result is not None
        assert result.outcome == ExecutionOutcome.CONFIRMED
        assert await ledger.pending_signals() == []

    @pytest.mark.asyncio
    async def test_process_error_leaves_signal_pending(self, ledger: LedgerStore) -> None:
        outbox = SignalOutbox(ledger, maxsize=10)
        orchestrator = MagicMock(spec=ExecutionOrchestrator)
        orchestrator.execute = AsyncMock(side_effect=RuntimeError("db locked"))
        worker = ExecutionWorker(outbox=outbox, orchestrator=orchestrator)
        await outbox.publish(_signal())

        assert await worker.process(outbox.queue.get_nowait()) is None

        assert len(await ledger.pending_signals()) == 1
        assert await outbox.requeue_pending() == 1

    @pytest.mark.asyncio
    async def test_run_drains_leftover_outbox_rows(self, ledger: LedgerStore) -> None:
        # Rows left pending by a previous run are picked up by the initial sweep.
        await ledger.enqueue_signal(signal_to_outbox(_signal(1)))
        await ledger.enqueue_signal(signal_to_outbox(_signal(2)))
        backend = DryRunExecutionBackend()
        outbox = SignalOutbox(ledger, maxsize=10)
        orchestrator = ExecutionOrchestrator(ledger=ledger, backend=backend, multiplier=0.1)
        worker = ExecutionWorker(outbox=outbox, orchestrator=orchestrator)
        stop = asyncio.Event()

        task = asyncio.create_task(worker.run(stop))
        for _ in range(100):
            if len(backend.submitted) == 2 and not await ledger.pending_signals():
                break
            await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=5)

        assert len(backend.submitted) == 2
        assert await ledger.pending_signals() == []

    @pytest.mark.asyncio
    async def test_unconfirmed_submission_keeps_row_pending(self, ledger: LedgerStore) -> None:
        # The order went out but its confirmation could not be written once.
        backend = DryRunExecutionBackend()
        outbox = SignalOutbox(ledger, maxsize=10)
        orchestrator = ExecutionOrchestrator(ledger=ledger, backend=backend, multiplier=0.1)
        worker = ExecutionWorker(outbox=outbox, orchestrator=orchestrator)
        ledger.update_trade_status = AsyncMock(side_effect=RuntimeError("database is locked"))
        await outbox.publish(_signal())

        assert await worker.process(outbox.queue.get_nowait()) is None
        assert await outbox.requeue_pending() == 1

        result = await worker.process(outbox.queue.get_nowait())

        assert result is not None
        assert result.outcome == ExecutionOutcome.UNRESOLVED
        assert len(backend.submitted) == 1
        assert len(await ledger.pending_signals()) == 1
        assert await outbox.requeue_pending() == 1
