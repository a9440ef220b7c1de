"""Polymarket copy trader.

Watches the Polymarket exchange contracts on Polygon for fills placed by
top-ranked traders and mirrors them through an idempotent execution pipeline.
"""

__version__ = "0.1.0"
