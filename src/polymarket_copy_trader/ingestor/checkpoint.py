"""Block watermark persistence.

The chain watcher checkpoints the highest contiguous processed block so a
restart resumes inside the backfill window instead of at the chain head.
"""

import logging
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_WATERMARK_KEY = "copytrader:chain:watermark"


class WatermarkCheckpoint(Protocol):
    async def load(self) -> int | None: ...

    async def save(self, block_number: int) -> None: ...


class RedisCheckpoint:
    """Stores the watermark as a plain integer string in Redis."""

    def __init__(self, redis: Redis, *, key: str = DEFAULT_WATERMARK_KEY) -> None:
        self._redis = redis
        self._key = key

    async def load(self) -> int | None:
        try:
            value = await self._redis.get(self._key)
        except Exception as e:
            logger.warning("Watermark checkpoint load failed: %s", e)
            return None
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        try:
            return int(value)
        except ValueError:
            logger.warning("Ignoring malformed watermark checkpoint %r", value)
            return None

    async def save(self, block_number: int) -> None:
        try:
            await self._redis.set(self._key, str(block_number))
        except Exception as e:
            logger.warning("Watermark checkpoint save failed: %s", e)
