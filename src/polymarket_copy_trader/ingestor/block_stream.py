"""Polygon newHeads subscription over a JSON-RPC WebSocket.

Delivers each new block number to a callback. Dropped connections are
re-established with exponential backoff; after a run of consecutive failed
attempts the stream gives up with SubscriptionError.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 20  # seconds
DEFAULT_INITIAL_RECONNECT_DELAY = 1.0  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 60.0  # seconds
DEFAULT_MAX_ATTEMPTS = 10
SUBSCRIBE_TIMEOUT_SECONDS = 10.0


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    heads_received: int = 0
    reconnect_count: int = 0
    consecutive_failures: int = 0
    last_block_number: int | None = None
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class BlockStreamError(Exception):
    """Base exception for block stream errors."""


class StreamConnectionError(BlockStreamError):
    """Raised when a connection or subscription attempt fails."""


class SubscriptionError(BlockStreamError):
    """Raised when reconnect attempts are exhausted."""


BlockCallback = Callable[[int], Awaitable[Any]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]


def parse_new_head(message: str | bytes) -> int | None:
    """Return the block number carried by an ``eth_subscription`` message."""
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Invalid JSON message on block stream")
        return None
    if not isinstance(data, dict) or data.get("method") != "eth_subscription":
        return None
    result = (data.get("params") or {}).get("result") or {}
    number = result.get("number") if isinstance(result, dict) else None
    if number is None:
        return None
    try:
        return int(number, 16) if isinstance(number, str) else int(number)
    except ValueError:
        logger.warning("Unparseable block number on block stream: %r", number)
        return None


class NewHeadsStream:
    """WebSocket client for the ``newHeads`` subscription."""

    def __init__(
        self,
        *,
        host: str,
        on_block: BlockCallback,
        on_state_change: StateCallback | None = None,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        initial_reconnect_delay: float = DEFAULT_INITIAL_RECONNECT_DELAY,
        max_reconnect_delay: float = DEFAULT_MAX_RECONNECT_DELAY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._host = host
        self._on_block = on_block
        self._on_state_change = on_state_change
        self._ping_interval = ping_interval
        self._initial_reconnect_delay = initial_reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._max_attempts = max_attempts

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._subscription_id: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Block stream state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await websockets.connect(
                self._host,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
            )
        except Exception as e:
            raise StreamConnectionError(f"Failed to connect to {self._host}: {e}") from e

        try:
            await ws.send(
                json.dumps({"jsonrpc": "2.0", "id": 1, "method": "eth_subscribe", "params": ["newHeads"]})
            )
            reply = json.loads(await asyncio.wait_for(ws.recv(), timeout=SUBSCRIBE_TIMEOUT_SECONDS))
        except Exception as e:
            with contextlib.suppress(Exception):
                await ws.close()
            raise StreamConnectionError(f"newHeads subscription failed: {e}") from e

        if not isinstance(reply, dict) or "result" not in reply:
            with contextlib.suppress(Exception):
                await ws.close()
            raise StreamConnectionError(f"newHeads subscription rejected: {reply!r}")

        self._subscription_id = str(reply["result"])
        await self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        self._stats.consecutive_failures = 0
        logger.info("Subscribed to newHeads on %s (id=%s)", self._host, self._subscription_id)
        return ws

    async def _handle_message(self, message: str | bytes) -> None:
        block_number = parse_new_head(message)
        if block_number is None:
            return
        self._stats.heads_received += 1
        self._stats.last_block_number = block_number
        self._stats.last_message_time = time.time()
        try:
            await self._on_block(block_number)
        except Exception as e:
            logger.error("Block callback failed for block %d: %s", block_number, e)

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    continue
                await self._handle_message(message)
        except websockets.ConnectionClosed as e:
            logger.warning("Block stream connection closed: %s", e)
            raise

    async def start(self) -> None:
        """Run until stopped.

        Raises:
            SubscriptionError: After ``max_attempts`` consecutive failed
                connection attempts.
        """
        if self._running:
            raise RuntimeError("Block stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        delay = self._initial_reconnect_delay
        try:
            while self._running and not self._stop_event.is_set():
                try:
                    self._ws = await self._connect()
                    delay = self._initial_reconnect_delay
                    await self._listen(self._ws)
                except Exception as e:
                    if not self._running:
                        break
                    self._stats.reconnect_count += 1
                    self._stats.last_error = str(e)
                    if isinstance(e, StreamConnectionError):
                        self._stats.consecutive_failures += 1
                    if self._stats.consecutive_failures >= self._max_attempts:
                        logger.error(
                            "Block stream giving up after %d consecutive failures: %s",
                            self._stats.consecutive_failures,
                            e,
                        )
                        raise SubscriptionError(
                            f"newHeads subscription failed {self._stats.consecutive_failures} times: {e}"
                        ) from e
                    await self._set_state(ConnectionState.RECONNECTING)
                    logger.warning("Block stream reconnecting in %.1fs: %s", delay, e)
                    with contextlib.suppress(TimeoutError):
                        await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    delay = min(self._max_reconnect_delay, delay * 2)
                finally:
                    with contextlib.suppress(Exception):
                        if self._ws:
                            await self._ws.close()
                    self._ws = None
        finally:
            self._running = False
            await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
