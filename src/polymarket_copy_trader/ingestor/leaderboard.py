"""Leaderboard ingestion.

Fetches the public Polymarket data-API leaderboard and records profitable
traders in the ledger, where the tracked trader set is built from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from polymarket_copy_trader.storage.ledger import LedgerStore
from polymarket_copy_trader.storage.repos import TrackedTraderDTO

logger = logging.getLogger(__name__)

DEFAULT_LEADERBOARD_URL = "https://data-api.polymarket.com/v1/leaderboard"
MAX_ESTIMATED_WIN_RATE = Decimal("0.9")


class LeaderboardError(Exception):
    """Raised when the leaderboard cannot be fetched or parsed."""


@dataclass(frozen=True)
class LeaderboardEntry:
    """One ranked trader returned by the data API."""

    address: str
    pnl: Decimal
    volume: Decimal
    rank: int | None = None
    username: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LeaderboardEntry:
        address = data.get("proxyWallet") or data.get("address")
        if not address:
            raise ValueError("leaderboard entry has no proxyWallet")
        rank = data.get("rank")
        return cls(
            address=str(address).lower(),
            pnl=Decimal(str(data.get("pnl") or 0)),
            volume=Decimal(str(data.get("vol") or 0)),
            rank=int(rank) if rank not in (None, "") else None,
            username=data.get("userName") or None,
        )


def estimate_win_rate(pnl: Decimal, volume: Decimal) -> Decimal:
    """Rough win-rate proxy from the pnl/volume ratio, capped at 0.9."""
    estimate = Decimal("0.5") + pnl / (volume + 1) * Decimal("0.3")
    return min(MAX_ESTIMATED_WIN_RATE, estimate).quantize(Decimal("0.0001"))


class LeaderboardClient:
    """Async HTTP client for the leaderboard endpoint."""

    def __init__(
        self,
        *,
        url: str = DEFAULT_LEADERBOARD_URL,
        time_period: str = "week",
        order_by: str = "PNL",
        limit: int = 20,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._params = {
            "timePeriod": time_period,
            "orderBy": order_by,
            "limit": str(limit),
            "offset": "0",
            "category": "overall",
        }
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def fetch(self) -> list[LeaderboardEntry]:
        """Fetch and parse the current leaderboard.

        Raises:
            LeaderboardError: On transport errors, non-2xx responses or a
                payload that is not a list.
        """
        try:
            response = await self._http.get(self._url, params=self._params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LeaderboardError(f"Leaderboard fetch failed: {e}") from e

        if not isinstance(payload, list):
            raise LeaderboardError(f"Unexpected leaderboard payload type: {type(payload).__name__}")

        entries: list[LeaderboardEntry] = []
        for item in payload:
            try:
                entries.append(LeaderboardEntry.from_dict(item))
            except (ValueError, TypeError, AttributeError, InvalidOperation) as e:
                logger.warning("Skipping malformed leaderboard entry %r: %s", item, e)
        return entries

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


@dataclass(frozen=True)
class LeaderboardRefreshResult:
    fetched: int
    stored: int


class LeaderboardIngestor:
    """Writes profitable leaderboard traders into the ledger."""

    def __init__(
        self,
        *,
        client: LeaderboardClient,
        ledger: LedgerStore,
        min_profit_threshold: float,
    ) -> None:
        self._client = client
        self._ledger = ledger
        self._min_profit = Decimal(str(min_profit_threshold))

    async def refresh(self) -> LeaderboardRefreshResult:
        entries = await self._client.fetch()
        if not entries:
            logger.warning("Leaderboard returned no entries; ledger unchanged")
            return LeaderboardRefreshResult(fetched=0, stored=0)

        traders = [
            TrackedTraderDTO(
                address=e.address,
                total_pnl=e.pnl,
                volume=e.volume,
                win_rate=estimate_win_rate(e.pnl, e.volume),
                username=e.username,
                rank=e.rank,
            )
            for e in entries
            if e.pnl >= self._min_profit
        ]
        stored = await self._ledger.upsert_traders(traders) if traders else 0
        logger.info(
            "Leaderboard refresh: %d fetched, %d stored (min pnl %s)",
            len(entries),
            stored,
            self._min_profit,
        )
        return LeaderboardRefreshResult(fetched=len(entries), stored=stored)
