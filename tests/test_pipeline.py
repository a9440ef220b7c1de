"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from polymarket_copy_trader.config import CTF_EXCHANGE_ADDRESS, Settings
from polymarket_copy_trader.detector.models import Side, TradeSignal
from polymarket_copy_trader.ingestor.block_stream import SubscriptionError
from polymarket_copy_trader.ingestor.leaderboard import LeaderboardEntry
from polymarket_copy_trader.pipeline import CopyTradingPipeline, PipelineState
from polymarket_copy_trader.storage.repos import TrackedTraderDTO

WHALE = "0x" + "a" * 40


@pytest.fixture
def mock_settings(tmp_path):
    """Create mock settings for testing."""
    database = MagicMock()
    database.url = f"sqlite+aiosqlite:///{tmp_path}/pipeline.db"

    redis = MagicMock()
    redis.url = None

    polygon = MagicMock()
    polygon.rpc_url = "https://polygon-rpc.com"
    polygon.fallback_rpc_url = None
    polygon.ws_url = "wss://polygon-ws.example"
    polygon.requests_per_second = 10.0

    exchange = MagicMock()
    exchange.contract_addresses = (CTF_EXCHANGE_ADDRESS,)

    leaderboard = MagicMock()
    leaderboard.url = "https://data-api.example/v1/leaderboard"
    leaderboard.time_period = "week"
    leaderboard.order_by = "PNL"
    leaderboard.fetch_limit = 20
    leaderboard.timeout_seconds = 5.0

    copy_trade = MagicMock()
    copy_trade.top_traders_count = 10
    copy_trade.min_profit_threshold = 1000.0
    copy_trade.multiplier = 0.1
    copy_trade.tracked_refresh_seconds = 3600
    copy_trade.leaderboard_refresh_seconds = 3600
    copy_trade.backfill_interval_seconds = 3600
    copy_trade.backfill_window_blocks = 100
    copy_trade.queue_size = 16
    copy_trade.queue_full_policy = "block"
    copy_trade.outbox_sweep_seconds = 60
    copy_trade.resubscribe_initial_delay = 1.0
    copy_trade.resubscribe_max_delay = 60.0
    copy_trade.resubscribe_max_attempts = 10

    settings = MagicMock(spec=Settings)
    settings.database = database
    settings.redis = redis
    settings.polygon = polygon
    settings.exchange = exchange
    settings.polymarket = MagicMock()
    settings.leaderboard = leaderboard
    settings.copy_trade = copy_trade
    settings.dry_run = True
    return settings


@pytest.fixture
def patched_network():
    """Replace network-facing clients with mocks."""
    with (
        patch("polymarket_copy_trader.pipeline.PolygonClient") as polygon_cls,
        patch("polymarket_copy_trader.pipeline.NewHeadsStream") as stream_cls,
        patch("polymarket_copy_trader.pipeline.LeaderboardClient") as leaderboard_cls,
    ):
        polygon = polygon_cls.return_value
        polygon.get_logs = AsyncMock(return_value=[])
        polygon.get_block_number = AsyncMock(return_value=1)
        polygon.aclose = AsyncMock()

        stream = stream_cls.return_value
        stream.start = AsyncMock()
        stream.stop = AsyncMock()

        leaderboard = leaderboard_cls.return_value
        leaderboard.fetch = AsyncMock(return_value=[])
        leaderboard.aclose = AsyncMock()

        yield MagicMock(polygon=polygon, stream=stream, leaderboard=leaderboard)


async def _wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.02)


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, mock_settings):
        """Pipeline should start in stopped state."""
        pipeline = CopyTradingPipeline(mock_settings)
        assert pipeline.state == PipelineState.STOPPED
        assert not pipeline.is_running

    def test_initial_stats(self, mock_settings):
        """Pipeline should have zero stats initially."""
        stats = CopyTradingPipeline(mock_settings).stats

        assert stats.started_at is None
        assert stats.signals_published == 0
        assert stats.errors == 0


class TestPipelineInitialization:
    """Tests for pipeline initialization."""

    def test_dry_run_from_settings(self, mock_settings):
        """Pipeline should use dry_run from settings by default."""
        mock_settings.dry_run = False
        assert CopyTradingPipeline(mock_settings)._dry_run is False

    def test_dry_run_override(self, mock_settings):
        """Pipeline should allow overriding dry_run."""
        mock_settings.dry_run = False
        assert CopyTradingPipeline(mock_settings, dry_run=True)._dry_run is True

    def test_uses_get_settings_when_none_provided(self):
        """Pipeline should call get_settings if no settings provided."""
        with patch("polymarket_copy_trader.pipeline.get_settings") as mock_get:
            mock_get.return_value = MagicMock(spec=Settings)
            mock_get.return_value.dry_run = False
            CopyTradingPipeline()
            mock_get.assert_called_once()


class TestSignalHandoff:
    """Tests for signal hand-off and tracked set refresh."""

    @pytest.mark.asyncio
    async def test_on_signal_publishes_to_outbox(self, mock_settings):
        """Signals from the watcher should go to the outbox."""
        pipeline = CopyTradingPipeline(mock_settings)
        pipeline._outbox = MagicMock()
        pipeline._outbox.publish = AsyncMock(return_value=True)
        signal = TradeSignal(
            trader=WHALE,
            side=Side.BUY,
            token_id=1,
            amount=10,
            price=2_000_000,
            transaction_hash="0xtx",
            order_hash="0xorder",
            block_number=1,
        )

        await pipeline._on_signal(signal)

        pipeline._outbox.publish.assert_awaited_once_with(signal)
        assert pipeline.stats.signals_published == 1
        assert pipeline.stats.last_signal_time is not None

    @pytest.mark.asyncio
    async def test_on_signal_without_outbox_raises(self, mock_settings):
        """Hand-off before start should fail so the block is retried."""
        pipeline = CopyTradingPipeline(mock_settings)
        with pytest.raises(RuntimeError):
            await pipeline._on_signal(MagicMock())

    @pytest.mark.asyncio
    async def test_refresh_tracked_traders_from_ledger(self, mock_settings):
        """Tracked set should be rebuilt from the ledger's top traders."""
        pipeline = CopyTradingPipeline(mock_settings)
        pipeline._ledger = MagicMock()
        pipeline._ledger.top_traders = AsyncMock(
            return_value=[TrackedTraderDTO(address="0x" + "A" * 40, total_pnl=Decimal("9000"))]
        )

        assert await pipeline.refresh_tracked_traders() is True

        pipeline._ledger.top_traders.assert_awaited_once_with(10)
        assert pipeline.tracked_traders.is_tracked(WHALE)


class TestQuerySurface:
    """Tests for query methods before start."""

    @pytest.mark.asyncio
    async def test_get_top_traders_requires_start(self, mock_settings):
        pipeline = CopyTradingPipeline(mock_settings)
        with pytest.raises(RuntimeError, match="not started"):
            await pipeline.get_top_traders()

    def test_request_refresh_requires_start(self, mock_settings):
        pipeline = CopyTradingPipeline(mock_settings)
        with pytest.raises(RuntimeError, match="not started"):
            pipeline.request_leaderboard_refresh()


class TestPipelineLifecycle:
    """Tests for pipeline lifecycle methods."""

    @pytest.mark.asyncio
    async def test_cannot_start_when_not_stopped(self, mock_settings):
        """Should raise error when starting non-stopped pipeline."""
        pipeline = CopyTradingPipeline(mock_settings)
        pipeline._state = PipelineState.RUNNING

        with pytest.raises(RuntimeError, match="Cannot start pipeline"):
            await pipeline.start()

    @pytest.mark.asyncio
    async def test_stop_when_already_stopped(self, mock_settings):
        """Stop should be no-op when already stopped."""
        pipeline = CopyTradingPipeline(mock_settings)
        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_settings, patched_network):
        """Pipeline should start its services and shut them down."""
        pipeline = CopyTradingPipeline(mock_settings)

        await pipeline.start()
        try:
            assert pipeline.is_running
            assert pipeline.stats.started_at is not None
            assert await pipeline.get_top_traders() == []
            assert await pipeline.open_positions() == []
        finally:
            await pipeline.stop()

        assert pipeline.state == PipelineState.STOPPED
        patched_network.stream.stop.assert_awaited()
        patched_network.polygon.aclose.assert_awaited()
        patched_network.leaderboard.aclose.assert_awaited()

    @pytest.mark.asyncio
    async def test_leaderboard_refresh_feeds_tracked_set(self, mock_settings, patched_network):
        """Stored leaderboard traders should become tracked."""
        patched_network.leaderboard.fetch.return_value = [
            LeaderboardEntry(address=WHALE, pnl=Decimal("5000"), volume=Decimal("20000")),
            LeaderboardEntry(address="0x" + "b" * 40, pnl=Decimal("10"), volume=Decimal("5")),
        ]

        async with CopyTradingPipeline(mock_settings) as pipeline:
            await _wait_until(lambda: pipeline.tracked_traders.size() > 0)

            assert pipeline.tracked_traders.is_tracked(WHALE)
            assert not pipeline.tracked_traders.is_tracked("0x" + "b" * 40)
            top = await pipeline.get_top_traders(5)
            assert [t.address for t in top] == [WHALE]

    @pytest.mark.asyncio
    async def test_request_leaderboard_refresh_wakes_loop(self, mock_settings, patched_network):
        """An explicit refresh request should trigger another fetch."""
        async with CopyTradingPipeline(mock_settings) as pipeline:
            await _wait_until(lambda: patched_network.leaderboard.fetch.await_count >= 1)

            pipeline.request_leaderboard_refresh()

            await _wait_until(lambda: patched_network.leaderboard.fetch.await_count >= 2)

    @pytest.mark.asyncio
    async def test_subscription_failure_stops_with_error(self, mock_settings, patched_network):
        """Exhausted block subscription should end the run in ERROR."""
        patched_network.stream.start.side_effect = SubscriptionError("gave up")
        pipeline = CopyTradingPipeline(mock_settings)

        await asyncio.wait_for(pipeline.run(), timeout=5)

        assert pipeline.state == PipelineState.ERROR
        assert pipeline.stats.errors >= 1
