"""
auctions.py - Auction House

Open-bid listings for single items:

    create_auction ──► ACTIVE ──place_bid──► ACTIVE (higher current_bid)
                         ├──buyout────────► SOLD   (at buyout_price)
                         └──sweep (ends_at passed)
                               ├── highest bidder ──► SOLD (at current_bid)
                               └── no bids ─────────► ENDED (item back to seller)

Escrow:
    - The listed item leaves the seller's inventory when the auction is created.
    - A bid commits the bidder's gold when it is placed. The displaced highest
      bidder is refunded their exact commitment in the same settlement.
    - Everything held in escrow is visible through in_flight_gold() and
      escrowed_items(), so ledger + escrow totals stay constant.

Auctions hold resources, so every change (creation, bid, close) is appended
to the record store; an engine restarted from the store resumes open
auctions with their escrow intact.
"""

from __future__ import annotations
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
import logging
import math
import uuid

from .config import EngineConfig
from .core import (
    GoldLedger, ItemInventory,
    Auction, AuctionStatus, Bid, MarketPrices,
    Result, ErrorKind, SettlementError,
    ESCROW, GOLD, paginate,
)
from .market import PriceBook, samples_from_auction
from .records import RecordStore, LoadedState, auction_record, persist
from .settlement import PlanBuilder, SettlementPlan, settle, failure_kind

logger = logging.getLogger(__name__)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class AuctionHouse:
    """
    Owns every auction, open or closed, and the escrow behind the open ones.

    Thread Safety:
        Not thread-safe. Runs on the engine's single thread of control.
    """

    def __init__(
        self,
        ledger: GoldLedger,
        inventory: ItemInventory,
        store: RecordStore,
        clock: Callable[[], datetime],
        config: Optional[EngineConfig] = None,
        price_book: Optional[PriceBook] = None,
        on_listed: Optional[Callable[[Auction], None]] = None,
    ):
        self.ledger = ledger
        self.inventory = inventory
        self.store = store
        self.clock = clock
        self.config = config or EngineConfig()
        self.price_book = price_book if price_book is not None else PriceBook()
        self.on_listed = on_listed

        self._active: Dict[str, Auction] = {}
        self._closed: Dict[str, Auction] = {}

    # ========================================================================
    # MUTATING OPERATIONS
    # ========================================================================

    def create_auction(
        self,
        item_id: str,
        starting_bid: int,
        duration_hours: Optional[float] = None,
        *,
        seller: str,
    ) -> Result:
        """
        List one unit of item_id, moving it from the seller into escrow.

        Returns:
            Result with the ACTIVE Auction; INVALID_OFFER for a malformed
            listing; INSUFFICIENT_QUANTITY if the seller does not hold the item.
        """
        if duration_hours is None:
            duration_hours = self.config.default_auction_hours
        if not seller or not item_id or item_id == GOLD:
            return Result.fail(ErrorKind.INVALID_OFFER, "seller and a valid item_id are required")
        if not _is_int(starting_bid) or starting_bid <= 0:
            return Result.fail(ErrorKind.INVALID_OFFER, f"starting bid must be a positive int, got {starting_bid!r}")
        if (isinstance(duration_hours, bool) or not isinstance(duration_hours, (int, float))
                or not math.isfinite(duration_hours) or duration_hours <= 0):
            return Result.fail(ErrorKind.INVALID_OFFER, f"duration must be positive, got {duration_hours!r}")
        max_hours = self.config.max_auction_hours
        if max_hours is not None and duration_hours > max_hours:
            return Result.fail(ErrorKind.INVALID_OFFER, f"duration cannot exceed {max_hours} hours")

        now = self.clock()
        try:
            ends_at = now + timedelta(hours=duration_hours)
        except OverflowError:
            return Result.fail(ErrorKind.INVALID_OFFER, f"duration of {duration_hours!r} hours is out of range")
        auction = Auction(
            id=f"auction_{uuid.uuid4().hex[:12]}",
            item_id=item_id,
            seller=seller,
            starting_bid=starting_bid,
            current_bid=starting_bid,
            buyout_price=starting_bid * self.config.buyout_multiplier,
            created_at=now,
            ends_at=ends_at,
        )
        plan = (PlanBuilder(auction.id)
                .side(seller, "seller")
                .items([item_id], seller, ESCROW)
                .build())
        failure = self._settle(plan)
        if failure is not None:
            return failure

        self._active[auction.id] = auction
        logger.info("auction %s listed: %s by %s from %d", auction.id, item_id, seller, starting_bid)
        warnings = persist(self.store, [auction_record(auction)])
        if self.on_listed is not None:
            self.on_listed(auction)
        return Result.ok(auction, warnings)

    def place_bid(self, auction_id: str, bidder: str, amount: int) -> Result:
        """
        Commit amount gold as the new highest bid.

        The bidder's gold moves into escrow; a different previous highest
        bidder gets their commitment back in the same settlement. A bidder
        raising their own bid only commits the difference.

        Returns:
            Result with the updated Auction; or NOT_FOUND, AUCTION_CLOSED,
            NOT_AUTHORIZED, INVALID_OFFER, BID_TOO_LOW, INSUFFICIENT_FUNDS.
        """
        auction, failure = self._get_open(auction_id, closed=ErrorKind.AUCTION_CLOSED)
        if failure is not None:
            return failure
        if bidder == auction.seller:
            return Result.fail(ErrorKind.NOT_AUTHORIZED, "sellers cannot bid on their own auction")
        if not _is_int(amount) or amount <= 0:
            return Result.fail(ErrorKind.INVALID_OFFER, f"bid must be a positive int, got {amount!r}")
        if amount <= auction.current_bid:
            return Result.fail(ErrorKind.BID_TOO_LOW, f"bid must exceed {auction.current_bid}")

        builder = PlanBuilder(auction.id).side(bidder, "bidder")
        if bidder == auction.highest_bidder:
            builder.gold(amount - auction.current_bid, bidder, ESCROW)
        else:
            builder.gold(amount, bidder, ESCROW)
            if auction.highest_bidder is not None:
                builder.gold(auction.current_bid, ESCROW, auction.highest_bidder)
        failure = self._settle(builder.build())
        if failure is not None:
            return failure

        now = self.clock()
        updated = replace(
            auction,
            current_bid=amount,
            highest_bidder=bidder,
            bids=auction.bids + (Bid(bidder, amount, now),),
        )
        self._active[auction.id] = updated
        logger.info("auction %s: %s bids %d", auction.id, bidder, amount)
        return Result.ok(updated, persist(self.store, [auction_record(updated)]))

    def buyout_auction(self, auction_id: str, buyer: str) -> Result:
        """
        Close an auction at its buyout price.

        The buyer pays buyout_price to the seller (a buyer who is already the
        highest bidder pays from their commitment first), receives the item,
        and any other highest bidder is refunded.

        Returns:
            Result with the SOLD Auction; or NOT_FOUND, INVALID_STATE,
            AUCTION_CLOSED, NOT_AUTHORIZED, INSUFFICIENT_FUNDS.
        """
        auction, failure = self._get_open(auction_id, closed=ErrorKind.INVALID_STATE)
        if failure is not None:
            return failure
        if buyer == auction.seller:
            return Result.fail(ErrorKind.NOT_AUTHORIZED, "sellers cannot buy out their own auction")

        price = auction.buyout_price
        builder = PlanBuilder(auction.id).side(buyer, "buyer").side(auction.seller, "seller")
        if buyer == auction.highest_bidder:
            committed = auction.current_bid
            builder.gold(min(committed, price), ESCROW, auction.seller)
            builder.gold(max(price - committed, 0), buyer, auction.seller)
            builder.gold(max(committed - price, 0), ESCROW, buyer)
        else:
            builder.gold(price, buyer, auction.seller)
            if auction.highest_bidder is not None:
                builder.gold(auction.current_bid, ESCROW, auction.highest_bidder)
        builder.items([auction.item_id], ESCROW, buyer)
        failure = self._settle(builder.build())
        if failure is not None:
            return failure

        sold, warnings = self._finish(auction, AuctionStatus.SOLD, self.clock(), buyer=buyer, price=price)
        return Result.ok(sold, warnings)

    def close_auction(self, auction_id: str, now: datetime) -> Optional[Auction]:
        """
        Settle one auction whose end time has passed.

        With a highest bidder the committed bid goes to the seller and the
        item to the bidder (SOLD); otherwise the item returns to the seller
        (ENDED). Returns the closed auction, or None if there was nothing to do.
        """
        auction = self._active.get(auction_id)
        if auction is None or not auction.is_expired(now):
            return None

        builder = PlanBuilder(auction.id)
        if auction.highest_bidder is not None:
            builder.gold(auction.current_bid, ESCROW, auction.seller)
            builder.items([auction.item_id], ESCROW, auction.highest_bidder)
        else:
            builder.items([auction.item_id], ESCROW, auction.seller)
        try:
            settle(builder.build(), self.ledger, self.inventory)
        except SettlementError as exc:
            logger.error("auction %s could not be closed, will retry on next sweep: %s", auction.id, exc)
            return None

        if auction.highest_bidder is not None:
            closed, _ = self._finish(
                auction, AuctionStatus.SOLD, now,
                buyer=auction.highest_bidder, price=auction.current_bid,
            )
        else:
            closed, _ = self._finish(auction, AuctionStatus.ENDED, now)
        return closed

    def close_expired(self, now: datetime) -> List[Auction]:
        """Sweep every active auction past its end time."""
        closed = []
        for auction_id in sorted(self._active, key=lambda a: (self._active[a].ends_at, a)):
            result = self.close_auction(auction_id, now)
            if result is not None:
                closed.append(result)
        return closed

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_auction(self, auction_id: str) -> Optional[Auction]:
        return self._active.get(auction_id) or self._closed.get(auction_id)

    def get_active_auctions(self, limit: Optional[int] = 20, offset: int = 0) -> List[Auction]:
        """Open, unexpired auctions, highest current bid first."""
        now = self.clock()
        rows = [a for a in self._active.values() if not a.is_expired(now)]
        rows.sort(key=lambda a: (-a.current_bid, a.ends_at, a.id))
        return paginate(rows, limit, offset)

    def get_closed_auctions(self, limit: Optional[int] = 20, offset: int = 0) -> List[Auction]:
        """Sold and ended auctions, most recently closed first."""
        rows = sorted(self._closed.values(), key=lambda a: (a.closed_at, a.id), reverse=True)
        return paginate(rows, limit, offset)

    def get_market_prices(self, item_id: str, window_days: Optional[int] = None) -> MarketPrices:
        if window_days is None:
            window_days = self.config.price_window_days
        return self.price_book.prices(item_id, self.clock(), window_days)

    def in_flight_gold(self) -> int:
        """Gold committed by highest bidders of open auctions."""
        return sum(a.committed_gold for a in self._active.values())

    def escrowed_items(self) -> Dict[str, int]:
        """Quantity of each item id held for open auctions."""
        return dict(Counter(a.item_id for a in self._active.values()))

    def active_count(self) -> int:
        return len(self._active)

    # ========================================================================
    # STARTUP
    # ========================================================================

    def restore(self, state: LoadedState) -> None:
        """Rebuild open auctions (with their escrow) and the closed archive."""
        for auction in sorted(state.auctions.values(), key=lambda a: (a.created_at, a.id)):
            if auction.is_terminal:
                self._closed[auction.id] = auction
                self.price_book.record(samples_from_auction(auction))
            else:
                self._active[auction.id] = auction
                if self.on_listed is not None:
                    self.on_listed(auction)
        logger.info("restored %d open and %d closed auction(s)", len(self._active), len(self._closed))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _get_open(self, auction_id: str, closed: ErrorKind) -> Tuple[Optional[Auction], Optional[Result]]:
        auction = self._active.get(auction_id)
        if auction is None:
            if auction_id in self._closed:
                status = self._closed[auction_id].status.value
                return None, Result.fail(closed, f"auction {auction_id} is {status}")
            return None, Result.fail(ErrorKind.NOT_FOUND, f"auction {auction_id} not found")
        if auction.is_expired(self.clock()):
            return None, Result.fail(ErrorKind.AUCTION_CLOSED, f"auction {auction_id} ended at {auction.ends_at}")
        return auction, None

    def _settle(self, plan: SettlementPlan) -> Optional[Result]:
        try:
            shortfall = settle(plan, self.ledger, self.inventory)
        except SettlementError as exc:
            return Result.fail(failure_kind(exc), str(exc))
        if shortfall is not None:
            return Result.fail(shortfall.reason, shortfall)
        return None

    def _finish(
        self,
        auction: Auction,
        status: AuctionStatus,
        now: datetime,
        buyer: Optional[str] = None,
        price: Optional[int] = None,
    ) -> Tuple[Auction, Tuple[ErrorKind, ...]]:
        final = replace(auction, status=status, buyer=buyer, final_price=price, closed_at=now)
        del self._active[auction.id]
        self._closed[final.id] = final
        self.price_book.record(samples_from_auction(final))
        logger.info(
            "auction %s %s%s", final.id, status.value,
            f" to {buyer} for {price}" if buyer else "",
        )
        return final, persist(self.store, [auction_record(final)])
