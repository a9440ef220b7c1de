"""Chain watcher for exchange fill events.

For each block it queries the exchange logs of that single block, decodes
them in log-index order, and turns fills involving a tracked trader into
trade signals. A periodic backfill pass re-queries the trailing blocks the
watermark has not yet covered.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from polymarket_copy_trader.detector.models import TradeSignal
from polymarket_copy_trader.detector.signals import extract_signal
from polymarket_copy_trader.detector.tracked_traders import TrackedTraderSet
from polymarket_copy_trader.ingestor.chain import PolygonClient, PolygonClientError, build_log_filter
from polymarket_copy_trader.ingestor.checkpoint import WatermarkCheckpoint
from polymarket_copy_trader.ingestor.decoder import WATCHED_TOPICS, DecodeError, decode_log
from polymarket_copy_trader.ingestor.models import ChainLogEvent, DecodedMatchEvent

logger = logging.getLogger(__name__)

DEFAULT_BACKFILL_WINDOW_BLOCKS = 100

SignalCallback = Callable[[TradeSignal], Awaitable[Any]]


class BlockWatermark:
    """Tracks which blocks have been processed.

    ``low`` is the highest block below which every block has been processed;
    blocks processed out of order above it are held until the gap closes.
    """

    def __init__(self, low: int | None = None) -> None:
        self._low = low
        self._highest = low
        self._ahead: set[int] = set()

    @property
    def low(self) -> int | None:
        return self._low

    @property
    def highest(self) -> int | None:
        return self._highest

    def is_processed(self, block_number: int) -> bool:
        if self._low is not None and block_number <= self._low:
            return True
        return block_number in self._ahead

    def mark(self, block_number: int) -> None:
        if self._highest is None or block_number > self._highest:
            self._highest = block_number
        if self._low is None:
            self._low = block_number
        elif block_number > self._low:
            self._ahead.add(block_number)
        self._advance()

    def skip_to(self, block_number: int) -> None:
        """Treat every block up to ``block_number`` as processed."""
        if self._low is None or block_number > self._low:
            self._low = block_number
            if self._highest is None or block_number > self._highest:
                self._highest = block_number
            self._ahead = {b for b in self._ahead if b > block_number}
            self._advance()

    def _advance(self) -> None:
        if self._low is None:
            return
        while self._low + 1 in self._ahead:
            self._low += 1
            self._ahead.discard(self._low)


@dataclass
class WatcherStats:
    blocks_processed: int = 0
    block_failures: int = 0
    logs_seen: int = 0
    decode_failures: int = 0
    fills_decoded: int = 0
    matches_seen: int = 0
    signals_emitted: int = 0
    backfill_passes: int = 0


class ChainWatcher:
    """Turns exchange logs into trade signals for tracked traders."""

    def __init__(
        self,
        *,
        client: PolygonClient,
        tracked: TrackedTraderSet,
        on_signal: SignalCallback,
        contract_addresses: Sequence[str],
        backfill_window_blocks: int = DEFAULT_BACKFILL_WINDOW_BLOCKS,
        checkpoint: WatermarkCheckpoint | None = None,
    ) -> None:
        if not contract_addresses:
            raise ValueError("At least one exchange contract address is required")
        self._client = client
        self._tracked = tracked
        self._on_signal = on_signal
        self._addresses = tuple(contract_addresses)
        self._window = backfill_window_blocks
        self._checkpoint = checkpoint
        self._watermark = BlockWatermark()
        self._stats = WatcherStats()

    @property
    def watermark(self) -> BlockWatermark:
        return self._watermark

    @property
    def stats(self) -> WatcherStats:
        return self._stats

    async def restore_checkpoint(self) -> int | None:
        """Seed the watermark from the checkpoint store, if any."""
        if self._checkpoint is None:
            return None
        low = await self._checkpoint.load()
        if low is not None:
            self._watermark.skip_to(low)
            logger.info("Restored chain watermark at block %d", low)
        return low

    async def handle_log(self, log: ChainLogEvent) -> TradeSignal | None:
        """Decode one log and derive a signal from it.

        Decode failures are logged and skipped. Signal callback errors
        propagate.
        """
        self._stats.logs_seen += 1
        try:
            event = decode_log(log)
        except DecodeError as e:
            self._stats.decode_failures += 1
            logger.warning(
                "Skipping undecodable log tx=%s index=%d: %s", log.transaction_hash, log.log_index, e
            )
            return None

        if isinstance(event, DecodedMatchEvent):
            # Per-party signals are derived from the accompanying OrderFilled logs.
            self._stats.matches_seen += 1
            logger.info(
                "OrdersMatched tx=%s taker_maker=%s (not converted to a signal)",
                event.transaction_hash,
                event.taker_order_maker,
            )
            return None

        self._stats.fills_decoded += 1
        snapshot = self._tracked.snapshot()
        signal = extract_signal(event, event.maker in snapshot, event.taker in snapshot)
        if signal is None:
            return None

        logger.info(
            "Tracked trader %s %s token=%d amount=%d tx=%s",
            signal.trader,
            signal.side.value,
            signal.token_id,
            signal.amount,
            signal.transaction_hash,
        )
        await self._on_signal(signal)
        self._stats.signals_emitted += 1
        return signal

    async def process_block(self, block_number: int) -> bool:
        """Query and handle the watched logs of one block.

        Returns:
            True if every log of the block was handed off, False if the log
            query or a signal hand-off failed.
        """
        params = build_log_filter(
            self._addresses, WATCHED_TOPICS, from_block=block_number, to_block=block_number
        )
        try:
            raw_logs = await self._client.get_logs(params)
        except PolygonClientError as e:
            self._stats.block_failures += 1
            logger.warning("Log query for block %d failed: %s", block_number, e)
            return False

        events: list[ChainLogEvent] = []
        for raw in raw_logs:
            try:
                events.append(ChainLogEvent.from_rpc(raw))
            except (KeyError, TypeError, ValueError) as e:
                self._stats.decode_failures += 1
                logger.warning("Skipping malformed log in block %d: %s", block_number, e)
        events.sort(key=lambda ev: ev.log_index)

        ok = True
        for event in events:
            try:
                await self.handle_log(event)
            except Exception as e:
                ok = False
                logger.error(
                    "Signal hand-off failed for tx=%s index=%d: %s",
                    event.transaction_hash,
                    event.log_index,
                    e,
                )

        if ok:
            self._watermark.mark(block_number)
            self._stats.blocks_processed += 1
        else:
            self._stats.block_failures += 1
        return ok

    async def backfill(self) -> int:
        """Re-process unprocessed blocks in the trailing window.

        Starts at the watermark and never earlier than the window start.

        Returns:
            Number of blocks processed successfully in this pass.
        """
        try:
            latest = await self._client.get_block_number()
        except PolygonClientError as e:
            logger.warning("Backfill skipped, head query failed: %s", e)
            return 0

        self._stats.backfill_passes += 1
        window_start = max(0, latest - self._window + 1)
        low = self._watermark.low
        if low is None:
            start = window_start
        else:
            if low < window_start - 1:
                logger.warning(
                    "Backfill window exceeded; abandoning blocks %d..%d", low + 1, window_start - 1
                )
                self._watermark.skip_to(window_start - 1)
                low = window_start - 1
            start = max(low, window_start)

        processed = 0
        for block_number in range(start, latest + 1):
            if block_number != start and self._watermark.is_processed(block_number):
                continue
            if await self.process_block(block_number):
                processed += 1

        if self._checkpoint is not None and self._watermark.low is not None:
            await self._checkpoint.save(self._watermark.low)
        if processed:
            logger.debug("Backfill pass processed %d blocks (%d..%d)", processed, start, latest)
        return processed
