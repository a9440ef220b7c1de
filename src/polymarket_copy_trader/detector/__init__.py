"""Signal detection layer - Tracked trader membership and fill-to-signal derivation."""

from polymarket_copy_trader.detector.models import Side, TradeSignal
from polymarket_copy_trader.detector.signals import extract_signal
from polymarket_copy_trader.detector.tracked_traders import (
    RankedTrader,
    TrackedTraderSet,
    TrackedTraderSnapshot,
)

__all__ = [
    "RankedTrader",
    "Side",
    "TrackedTraderSet",
    "TrackedTraderSnapshot",
    "TradeSignal",
    "extract_signal",
]
