"""Main pipeline orchestrator for the Polymarket copy trader.

This module provides the CopyTradingPipeline class that wires together the
chain watcher, tracked trader set, leaderboard ingestion and the execution
worker, and supervises their background tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from polymarket_copy_trader.config import Settings, get_settings
from polymarket_copy_trader.detector.models import TradeSignal
from polymarket_copy_trader.detector.tracked_traders import RankedTrader, TrackedTraderSet
from polymarket_copy_trader.executor.backend import (
    ClobExecutionBackend,
    DryRunExecutionBackend,
    ExecutionBackend,
)
from polymarket_copy_trader.executor.orchestrator import ExecutionOrchestrator
from polymarket_copy_trader.executor.queue import ExecutionWorker, QueueFullPolicy, SignalOutbox
from polymarket_copy_trader.ingestor.block_stream import NewHeadsStream, SubscriptionError
from polymarket_copy_trader.ingestor.chain import PolygonClient
from polymarket_copy_trader.ingestor.checkpoint import RedisCheckpoint
from polymarket_copy_trader.ingestor.leaderboard import LeaderboardClient, LeaderboardIngestor
from polymarket_copy_trader.ingestor.watcher import ChainWatcher
from polymarket_copy_trader.storage.database import DatabaseManager
from polymarket_copy_trader.storage.ledger import LedgerStore
from polymarket_copy_trader.storage.repos import PositionDTO, TrackedTraderDTO

logger = logging.getLogger(__name__)


async def _first_set(*events: asyncio.Event) -> None:
    """Return once any of ``events`` is set."""
    waiters = [asyncio.ensure_future(event.wait()) for event in events]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    signals_published: int = 0
    tracked_refreshes: int = 0
    leaderboard_refreshes: int = 0
    errors: int = 0
    last_signal_time: datetime | None = None
    last_error: str | None = None


class CopyTradingPipeline:
    """Main pipeline for the Polymarket copy trader.

    Pipeline flow:
        newHeads → ChainWatcher → decoder → signal extraction (TrackedTraderSet)
        → SignalOutbox → ExecutionWorker → ExecutionOrchestrator → ledger / CLOB

    Background tasks (all observe one stop event):
        block subscription, backfill, tracked-set refresh, leaderboard
        refresh, execution worker.

    Example:
        ```python
        from polymarket_copy_trader.config import get_settings
        from polymarket_copy_trader.pipeline import CopyTradingPipeline

        pipeline = CopyTradingPipeline(get_settings())
        await pipeline.start()
        top = await pipeline.get_top_traders(10)
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, simulate order submission. Overrides settings.dry_run.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._ledger: LedgerStore | None = None
        self._polygon_client: PolygonClient | None = None
        self._leaderboard_client: LeaderboardClient | None = None
        self._leaderboard: LeaderboardIngestor | None = None
        self._backend: ExecutionBackend | None = None
        self._orchestrator: ExecutionOrchestrator | None = None
        self._outbox: SignalOutbox | None = None
        self._worker: ExecutionWorker | None = None
        self._watcher: ChainWatcher | None = None
        self._block_stream: NewHeadsStream | None = None
        self._tracked = TrackedTraderSet()

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._leaderboard_wakeup: asyncio.Event | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def tracked_traders(self) -> TrackedTraderSet:
        return self._tracked

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        self._leaderboard_wakeup = asyncio.Event()
        logger.info("Starting pipeline (dry_run=%s)...", self._dry_run)

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        failed = self._state == PipelineState.ERROR
        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.ERROR if failed else PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings
        copy = settings.copy_trade

        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url)
        if settings.database.url.startswith("sqlite"):
            await self._db_manager.init_schema_async()
        self._ledger = LedgerStore(self._db_manager.get_async_session)

        checkpoint = None
        if settings.redis.url:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)
            checkpoint = RedisCheckpoint(self._redis, key=settings.redis.watermark_key)

        logger.debug("Initializing Polygon client...")
        self._polygon_client = PolygonClient(
            settings.polygon.rpc_url,
            fallback_rpc_url=settings.polygon.fallback_rpc_url,
            max_requests_per_second=settings.polygon.requests_per_second,
        )

        logger.debug("Initializing leaderboard ingestion...")
        self._leaderboard_client = LeaderboardClient(
            url=settings.leaderboard.url,
            time_period=settings.leaderboard.time_period,
            order_by=settings.leaderboard.order_by,
            limit=settings.leaderboard.fetch_limit,
            timeout_seconds=settings.leaderboard.timeout_seconds,
        )
        self._leaderboard = LeaderboardIngestor(
            client=self._leaderboard_client,
            ledger=self._ledger,
            min_profit_threshold=copy.min_profit_threshold,
        )

        logger.debug("Initializing execution backend...")
        if self._dry_run:
            self._backend = DryRunExecutionBackend()
        else:
            self._backend = ClobExecutionBackend.from_settings(settings.polymarket)
        self._orchestrator = ExecutionOrchestrator(
            ledger=self._ledger,
            backend=self._backend,
            multiplier=copy.multiplier,
        )
        self._outbox = SignalOutbox(
            self._ledger,
            maxsize=copy.queue_size,
            policy=QueueFullPolicy(copy.queue_full_policy),
        )
        self._worker = ExecutionWorker(
            outbox=self._outbox,
            orchestrator=self._orchestrator,
            sweep_interval_seconds=copy.outbox_sweep_seconds,
        )

        logger.debug("Initializing chain watcher...")
        self._watcher = ChainWatcher(
            client=self._polygon_client,
            tracked=self._tracked,
            on_signal=self._on_signal,
            contract_addresses=settings.exchange.contract_addresses,
            backfill_window_blocks=copy.backfill_window_blocks,
            checkpoint=checkpoint,
        )
        await self._watcher.restore_checkpoint()

        self._block_stream = NewHeadsStream(
            host=settings.polygon.ws_url,
            on_block=self._watcher.process_block,
            initial_reconnect_delay=copy.resubscribe_initial_delay,
            max_reconnect_delay=copy.resubscribe_max_delay,
            max_attempts=copy.resubscribe_max_attempts,
        )

    def _spawn(self, name: str, coro: Coroutine[Any, Any, None]) -> None:
        logger.debug("Starting %s...", name)
        self._tasks.append(asyncio.create_task(coro, name=name))

    async def _start_background_services(self) -> None:
        """Start background services."""
        self._spawn("tracked-refresh", self._run_tracked_refresh_loop())
        self._spawn("leaderboard-refresh", self._run_leaderboard_loop())
        self._spawn("execution-worker", self._run_execution_worker())
        self._spawn("block-subscription", self._run_block_stream())
        self._spawn("backfill", self._run_backfill_loop())

    async def _on_signal(self, signal: TradeSignal) -> None:
        if not self._outbox:
            raise RuntimeError("Signal outbox is not initialized")
        await self._outbox.publish(signal)
        self._stats.signals_published += 1
        self._stats.last_signal_time = datetime.now(UTC)

    async def _load_ranking(self) -> list[RankedTrader]:
        if not self._ledger:
            return []
        top = await self._ledger.top_traders(self._settings.copy_trade.top_traders_count)
        return [RankedTrader(address=t.address, total_pnl=t.total_pnl) for t in top]

    async def refresh_tracked_traders(self) -> bool:
        """Rebuild the tracked set from the ledger's top traders."""
        published = await self._tracked.refresh(self._load_ranking)
        self._stats.tracked_refreshes += 1
        return published

    async def _wait_or_stop(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; return True if stop was requested."""
        if not self._stop_event:
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    async def _run_tracked_refresh_loop(self) -> None:
        interval = self._settings.copy_trade.tracked_refresh_seconds
        while self._stop_event and not self._stop_event.is_set():
            try:
                await self.refresh_tracked_traders()
            except Exception as e:
                self._record_error(e)
                logger.warning("Tracked trader refresh failed: %s", e)
            if await self._wait_or_stop(interval):
                break

    async def _run_leaderboard_loop(self) -> None:
        stop_event = self._stop_event
        wakeup = self._leaderboard_wakeup
        if not self._leaderboard or stop_event is None or wakeup is None:
            return
        interval = self._settings.copy_trade.leaderboard_refresh_seconds
        while not stop_event.is_set():
            wakeup.clear()
            try:
                result = await self._leaderboard.refresh()
                self._stats.leaderboard_refreshes += 1
                if result.stored:
                    await self.refresh_tracked_traders()
            except Exception as e:
                self._record_error(e)
                logger.warning("Leaderboard refresh failed: %s", e)

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(_first_set(stop_event, wakeup), timeout=interval)

    async def _run_backfill_loop(self) -> None:
        if not self._watcher:
            return
        interval = self._settings.copy_trade.backfill_interval_seconds
        while self._stop_event and not self._stop_event.is_set():
            if await self._wait_or_stop(interval):
                break
            try:
                await self._watcher.backfill()
            except Exception as e:
                self._record_error(e)
                logger.warning("Backfill pass failed: %s", e)

    async def _run_block_stream(self) -> None:
        if not self._block_stream:
            return
        try:
            await self._block_stream.start()
        except SubscriptionError as e:
            self._record_error(e)
            self._state = PipelineState.ERROR
            logger.error("Block subscription failed permanently: %s", e)
            if self._stop_event:
                self._stop_event.set()

    async def _run_execution_worker(self) -> None:
        if not self._worker or not self._stop_event:
            return
        await self._worker.run(self._stop_event)

    def _record_error(self, error: BaseException) -> None:
        self._stats.errors += 1
        self._stats.last_error = str(error)

    # -- query surface ------------------------------------------------------

    async def get_top_traders(self, limit: int = 10) -> list[TrackedTraderDTO]:
        """Top traders by recorded profit."""
        if not self._ledger:
            raise RuntimeError("Pipeline is not started")
        return await self._ledger.top_traders(limit)

    def request_leaderboard_refresh(self) -> None:
        """Wake the leaderboard loop for an immediate refresh."""
        if not self._leaderboard_wakeup:
            raise RuntimeError("Pipeline is not started")
        self._leaderboard_wakeup.set()

    async def open_positions(self) -> list[PositionDTO]:
        if not self._ledger:
            raise RuntimeError("Pipeline is not started")
        return await self._ledger.open_positions()

    # -- shutdown -----------------------------------------------------------

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._block_stream:
            logger.debug("Stopping block subscription...")
            await self._block_stream.stop()

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._leaderboard_client:
            await self._leaderboard_client.aclose()
            self._leaderboard_client = None

        if self._polygon_client:
            await self._polygon_client.aclose()
            self._polygon_client = None

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the pipeline and run until stopped or a fatal error."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> CopyTradingPipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
