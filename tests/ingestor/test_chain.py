"""Tests for the Polygon RPC client."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import Web3Exception

from polymarket_copy_trader.ingestor.chain import PolygonClient, RateLimiter, RPCError, build_log_filter


class TestBuildLogFilter:
    """Tests for build_log_filter."""

    def test_filter_shape(self) -> None:
        params = build_log_filter(
            ["0x4bfb41d5b3570defd03c39a9a4d8de6bd8b8982e"],
            ["0xaa", "0xbb"],
            from_block=10,
            to_block=10,
        )

        assert params["address"] == ["0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"]
        assert params["topics"] == [["0xaa", "0xbb"]]
        assert params["fromBlock"] == 10
        assert params["toBlock"] == 10


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.mark.asyncio
    async def test_acquire_within_rate(self) -> None:
        limiter = RateLimiter.create(5)
        for _ in range(5):
            await limiter.acquire()
        assert limiter.tokens < 1


def _client_with(primary_eth: MagicMock, fallback_eth: MagicMock | None = None) -> PolygonClient:
    client = PolygonClient(
        "https://primary.example",
        fallback_rpc_url="https://fallback.example" if fallback_eth is not None else None,
        max_requests_per_second=1000,
        retry_delay_seconds=0.001,
    )
    client._w3 = MagicMock(eth=primary_eth)
    if fallback_eth is not None:
        client._w3_fallback = MagicMock(eth=fallback_eth)
    return client


class TestPolygonClient:
    """Tests for PolygonClient retry and failover."""

    @pytest.mark.asyncio
    async def test_get_block_number(self) -> None:
        eth = MagicMock()
        eth.get_block = AsyncMock(return_value={"number": 123})

        assert await _client_with(eth).get_block_number() == 123
        eth.get_block.assert_awaited_once_with("latest")

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self) -> None:
        eth = MagicMock()
        eth.get_logs = AsyncMock(side_effect=[Web3Exception("busy"), [{"logIndex": 0}]])

        logs = await _client_with(eth).get_logs({"fromBlock": 1, "toBlock": 1})

        assert logs == [{"logIndex": 0}]
        assert eth.get_logs.await_count == 2

    @pytest.mark.asyncio
    async def test_fails_over_to_fallback(self) -> None:
        primary = MagicMock()
        primary.get_logs = AsyncMock(side_effect=OSError("connection refused"))
        fallback = MagicMock()
        fallback.get_logs = AsyncMock(return_value=[])

        assert await _client_with(primary, fallback).get_logs({}) == []
        assert primary.get_logs.await_count == 3
        fallback.get_logs.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_raises_after_all_retries(self) -> None:
        eth = MagicMock()
        eth.get_block = AsyncMock(side_effect=TimeoutError())
        client = _client_with(eth)

        with pytest.raises(RPCError):
            await client.get_block_number()
        assert await client.health_check() is False
