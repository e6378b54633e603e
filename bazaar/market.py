"""
market.py - Market price statistics

Pure functions that derive price statistics from the gold amounts of
completed trades and auction sales. Nothing here reads or mutates engine
state: callers pass the samples in.

Pricing rules:
    - A completed trade that moved gold yields one sample per distinct item
      id it carried, priced at the trade's total gold.
    - A barter (no gold on either side) carries no price and yields nothing.
    - A sold auction yields one sample at its final price.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

import numpy as np

from .core import (
    TradeRequest, TradeStatus, Auction, AuctionStatus,
    PriceSample, MarketPrices,
)


def samples_from_trade(trade: TradeRequest) -> List[PriceSample]:
    if trade.status is not TradeStatus.COMPLETED or trade.gold_volume == 0:
        return []
    timestamp = trade.terminal_at or trade.created_at
    item_ids = sorted(set(trade.offer.items) | set(trade.request.items))
    return [
        PriceSample(item_id=item_id, price=trade.gold_volume, timestamp=timestamp, source="trade")
        for item_id in item_ids
    ]


def samples_from_auction(auction: Auction) -> List[PriceSample]:
    if auction.status is not AuctionStatus.SOLD or not auction.final_price:
        return []
    timestamp = auction.closed_at or auction.ends_at
    return [PriceSample(auction.item_id, auction.final_price, timestamp, source="auction")]


class PriceBook:
    """
    Append-only collection of price samples shared by the trade manager and
    the auction house. Derived state: rebuilt from archived history at load.
    """

    def __init__(self):
        self._samples: List[PriceSample] = []

    def record(self, samples: Iterable[PriceSample]) -> None:
        self._samples.extend(samples)

    def samples(self, item_id: Optional[str] = None) -> List[PriceSample]:
        if item_id is None:
            return list(self._samples)
        return [s for s in self._samples if s.item_id == item_id]

    def prices(self, item_id: str, now: datetime, window_days: int = 7) -> MarketPrices:
        return compute_market_prices(self._samples, item_id, now, window_days)

    def __len__(self) -> int:
        return len(self._samples)


def compute_market_prices(
    samples: Iterable[PriceSample],
    item_id: str,
    now: datetime,
    window_days: int = 7,
) -> MarketPrices:
    """
    Price statistics for one item over the window (now - window_days, now].

    Args:
        samples: Price samples (any items; filtered here)
        item_id: Item to price
        now: End of the window
        window_days: Window length in days

    Returns:
        MarketPrices with average (rounded half-up), min, max and sample_count;
        all zeros when no sample falls in the window.
    """
    if window_days <= 0:
        raise ValueError(f"window_days must be positive, got {window_days}")

    rows = [(s.timestamp.timestamp(), s.price) for s in samples if s.item_id == item_id]
    if not rows:
        return MarketPrices(item_id=item_id)

    data = np.asarray(rows, dtype=np.float64)
    cutoff = (now - timedelta(days=window_days)).timestamp()
    mask = (data[:, 0] > cutoff) & (data[:, 0] <= now.timestamp())
    prices = data[mask, 1].astype(np.int64)
    if prices.size == 0:
        return MarketPrices(item_id=item_id)

    total = int(prices.sum())
    average = (Decimal(total) / Decimal(int(prices.size))).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return MarketPrices(
        item_id=item_id,
        average=int(average),
        min=int(prices.min()),
        max=int(prices.max()),
        sample_count=int(prices.size),
    )
