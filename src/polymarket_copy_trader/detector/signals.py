"""Trade signal extraction from decoded fill events.

The party whose own asset id is the cash leg (0) is paying USDC, so it is
buying the counter asset. Any other party is selling its own outcome token.
"""

from __future__ import annotations

import logging

from polymarket_copy_trader.detector.models import Side, TradeSignal
from polymarket_copy_trader.ingestor.models import CASH_ASSET_ID, DecodedFillEvent

logger = logging.getLogger(__name__)

PRICE_SCALE = 1_000_000


def extract_signal(
    event: DecodedFillEvent,
    maker_tracked: bool,
    taker_tracked: bool,
) -> TradeSignal | None:
    """Derive a TradeSignal for the tracked party of a fill.

    If both parties are tracked the maker wins. Price is only defined for
    BUY, as ``counter_amount * 1e6 // own_amount``.

    Returns:
        The signal, or None if neither party is tracked.
    """
    if maker_tracked:
        trader = event.maker
        own_asset, own_amount = event.maker_asset_id, event.maker_amount_filled
        counter_asset, counter_amount = event.taker_asset_id, event.taker_amount_filled
    elif taker_tracked:
        trader = event.taker
        own_asset, own_amount = event.taker_asset_id, event.taker_amount_filled
        counter_asset, counter_amount = event.maker_asset_id, event.maker_amount_filled
    else:
        return None

    price: int | None = None
    if own_asset == CASH_ASSET_ID:
        side = Side.BUY
        token_id = counter_asset
        amount = counter_amount
        if own_amount > 0:
            price = (counter_amount * PRICE_SCALE) // own_amount
    else:
        side = Side.SELL
        token_id = own_asset
        amount = own_amount

    return TradeSignal(
        trader=trader.lower(),
        side=side,
        token_id=token_id,
        amount=amount,
        price=price,
        transaction_hash=event.transaction_hash.lower(),
        order_hash=event.order_hash.lower(),
        block_number=event.block_number,
    )
