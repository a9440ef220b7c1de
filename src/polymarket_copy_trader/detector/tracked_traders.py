"""Tracked trader membership.

The set is an immutable snapshot behind a single reference. Refreshes build
a complete replacement and swap the reference in one assignment, so a
reader holding the old snapshot keeps seeing all of it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedTrader:
    """One entry of the ranking a snapshot was built from."""

    address: str
    total_pnl: Decimal


@dataclass(frozen=True)
class TrackedTraderSnapshot:
    """One generation of the tracked trader set."""

    generation: int
    addresses: frozenset[str] = field(default_factory=frozenset)
    ranking: tuple[RankedTrader, ...] = ()

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self.addresses

    def __len__(self) -> int:
        return len(self.addresses)


RankingLoader = Callable[[], Awaitable[Iterable[RankedTrader]]]


class TrackedTraderSet:
    """Concurrently readable set of tracked trader addresses."""

    def __init__(self) -> None:
        self._snapshot = TrackedTraderSnapshot(generation=0)

    def snapshot(self) -> TrackedTraderSnapshot:
        """Return the current snapshot; callers should keep it for a whole decision."""
        return self._snapshot

    def is_tracked(self, address: str) -> bool:
        return address.lower() in self._snapshot.addresses

    def size(self) -> int:
        return len(self._snapshot.addresses)

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    def publish(self, ranking: Iterable[RankedTrader]) -> bool:
        """Replace the set with a new generation built from ``ranking``.

        An empty ranking leaves the current set in place.

        Returns:
            True if a new generation was published.
        """
        ordered = tuple(
            RankedTrader(address=r.address.lower(), total_pnl=r.total_pnl) for r in ranking
        )
        if not ordered:
            logger.warning(
                "Tracked trader refresh returned no traders; keeping generation %d (%d addresses)",
                self._snapshot.generation,
                len(self._snapshot.addresses),
            )
            return False

        new_snapshot = TrackedTraderSnapshot(
            generation=self._snapshot.generation + 1,
            addresses=frozenset(r.address for r in ordered),
            ranking=ordered,
        )
        self._snapshot = new_snapshot
        logger.info(
            "Published tracked trader generation %d with %d addresses",
            new_snapshot.generation,
            len(new_snapshot.addresses),
        )
        return True

    async def refresh(self, loader: RankingLoader) -> bool:
        """Load a fresh ranking and publish it.

        Loader errors propagate and leave the current set untouched.
        """
        ranking = list(await loader())
        return self.publish(ranking)
