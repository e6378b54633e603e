"""
engine.py - Trading Engine

Composes the trade manager, the auction house, the shared price book, the
record store and the expiry scheduler behind one facade that owns the
engine's logical clock.

Execution order each step():
1. Advance the logical clock (never backwards)
2. Process due scheduled events (trade expiry, auction close)
3. Poll for anything stale the scheduler did not cover

Every interactive operation and every step() runs to completion on the
caller's thread; the engine is not thread-safe and must be driven from one
thread of control (or one event loop task queue).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

from .auctions import AuctionHouse
from .config import EngineConfig
from .core import (
    GoldLedger, ItemInventory,
    TradeRequest, TradeStats, Auction, MarketPrices, Result,
)
from .market import PriceBook
from .records import RecordStore, MemoryRecordStore, LoadedState, fold_records
from .scheduler import (
    EventScheduler, TRADE_EXPIRY, AUCTION_CLOSE,
    trade_expiry_event, auction_close_event,
)
from .trades import TradeManager, TradeAnalytics, OfferCheck

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Entities retired by one engine tick."""
    expired_trades: List[TradeRequest] = field(default_factory=list)
    closed_auctions: List[Auction] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.expired_trades) + len(self.closed_auctions)


class TradingEngine:
    """
    Trading and auction settlement engine.

    Example:
        engine = TradingEngine(Ledger(), Inventory(), start_time=datetime(2025, 1, 1))
        result = engine.create_trade_request("alice", "bob", offered_gold=100,
                                             requested_items=["iron_sword"])
        engine.accept_trade(result.data.id, "bob")
        engine.step(datetime(2025, 1, 2, 1))  # sweeps anything stale
    """

    def __init__(
        self,
        ledger: GoldLedger,
        inventory: ItemInventory,
        store: Optional[RecordStore] = None,
        config: Optional[EngineConfig] = None,
        start_time: Optional[datetime] = None,
    ):
        """
        Args:
            ledger: Gold balances to settle against
            inventory: Item holdings to settle against
            store: Durable record store (in-memory if omitted)
            config: Engine configuration (defaults if omitted)
            start_time: Initial logical time (now, UTC, if omitted)
        """
        self.ledger = ledger
        self.inventory = inventory
        self.store = store if store is not None else MemoryRecordStore()
        self.config = config or EngineConfig()
        self._current_time = start_time or datetime.now(timezone.utc)

        self.price_book = PriceBook()
        self.scheduler = EventScheduler()
        self.trades = TradeManager(
            ledger, inventory, self.store, self._clock, self.config,
            price_book=self.price_book, on_pending=self._schedule_expiry,
        )
        self.auctions = AuctionHouse(
            ledger, inventory, self.store, self._clock, self.config,
            price_book=self.price_book, on_listed=self._schedule_close,
        )
        self.scheduler.register(TRADE_EXPIRY, self.trades.expire_trade)
        self.scheduler.register(AUCTION_CLOSE, self.auctions.close_auction)

    # ========================================================================
    # CLOCK
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the logical clock forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    def _clock(self) -> datetime:
        return self._current_time

    # ========================================================================
    # STARTUP
    # ========================================================================

    def load(self) -> LoadedState:
        """
        Rebuild archives, stats, open auctions and price history from the store.

        Call once, before any operation. Open auctions are rescheduled for close.
        """
        state = fold_records(self.store.load_all())
        self.trades.restore(state)
        self.auctions.restore(state)
        if state.skipped:
            logger.warning("skipped %d unreadable record(s) at load", state.skipped)
        return state

    # ========================================================================
    # TICK
    # ========================================================================

    def step(self, now: Optional[datetime] = None) -> StepResult:
        """
        Advance time and retire everything that is due.

        Args:
            now: New logical time (the current time if omitted)

        Returns:
            StepResult with the trades expired and auctions closed by this tick
        """
        if now is not None:
            self.advance_time(now)
        now = self._current_time

        result = StepResult()
        for entity in self.scheduler.step(now):
            self._collect(result, entity)
        result.expired_trades.extend(self.trades.expire_stale(now))
        result.closed_auctions.extend(self.auctions.close_expired(now))

        if result:
            logger.info(
                "step %s: %d trade(s) expired, %d auction(s) closed",
                now.isoformat(), len(result.expired_trades), len(result.closed_auctions),
            )
        return result

    def run(self, timestamps: Iterable[datetime]) -> StepResult:
        """Step through a sequence of timestamps, accumulating what retired."""
        total = StepResult()
        for timestamp in timestamps:
            tick = self.step(timestamp)
            total.expired_trades.extend(tick.expired_trades)
            total.closed_auctions.extend(tick.closed_auctions)
        return total

    @staticmethod
    def _collect(result: StepResult, entity: Any) -> None:
        if isinstance(entity, TradeRequest):
            result.expired_trades.append(entity)
        else:
            result.closed_auctions.append(entity)

    def _schedule_expiry(self, trade: TradeRequest) -> None:
        self.scheduler.schedule(trade_expiry_event(trade.id, trade.created_at + self.config.trade_ttl))

    def _schedule_close(self, auction: Auction) -> None:
        self.scheduler.schedule(auction_close_event(auction.id, auction.ends_at))

    # ========================================================================
    # TRADES
    # ========================================================================

    def create_trade_request(
        self,
        initiator: str,
        target: str,
        offered_items: Iterable[str] = (),
        requested_items: Iterable[str] = (),
        offered_gold: int = 0,
        requested_gold: int = 0,
    ) -> Result:
        return self.trades.create_trade_request(
            initiator, target, offered_items, requested_items, offered_gold, requested_gold,
        )

    def accept_trade(self, trade_id: str, actor: str) -> Result:
        return self.trades.accept_trade(trade_id, actor)

    def decline_trade(self, trade_id: str, actor: str) -> Result:
        return self.trades.decline_trade(trade_id, actor)

    def cancel_trade(self, trade_id: str, actor: str) -> Result:
        return self.trades.cancel_trade(trade_id, actor)

    def get_trade(self, trade_id: str) -> Optional[TradeRequest]:
        return self.trades.get_trade(trade_id)

    def get_pending_trades(self, actor: Optional[str] = None, limit: Optional[int] = 20, offset: int = 0) -> List[TradeRequest]:
        return self.trades.get_pending_trades(actor, limit, offset)

    def get_user_trade_history(self, actor: str, limit: Optional[int] = 10, offset: int = 0) -> List[TradeRequest]:
        return self.trades.get_user_trade_history(actor, limit, offset)

    def get_trade_listings(self, limit: Optional[int] = 20, offset: int = 0) -> List[TradeRequest]:
        return self.trades.get_trade_listings(limit, offset)

    def get_trade_stats(self, actor: str) -> TradeStats:
        return self.trades.get_trade_stats(actor)

    def get_trade_analytics(self, actor: str) -> TradeAnalytics:
        return self.trades.get_trade_analytics(actor)

    def validate_trade_offer(self, actor: str, items: Iterable[str] = (), gold: int = 0) -> OfferCheck:
        return self.trades.validate_trade_offer(actor, items, gold)

    # ========================================================================
    # AUCTIONS
    # ========================================================================

    def create_auction(
        self,
        item_id: str,
        starting_bid: int,
        duration_hours: Optional[float] = None,
        *,
        seller: str,
    ) -> Result:
        return self.auctions.create_auction(item_id, starting_bid, duration_hours, seller=seller)

    def place_bid(self, auction_id: str, bidder: str, amount: int) -> Result:
        return self.auctions.place_bid(auction_id, bidder, amount)

    def buyout_auction(self, auction_id: str, buyer: str) -> Result:
        return self.auctions.buyout_auction(auction_id, buyer)

    def get_auction(self, auction_id: str) -> Optional[Auction]:
        return self.auctions.get_auction(auction_id)

    def get_active_auctions(self, limit: Optional[int] = 20, offset: int = 0) -> List[Auction]:
        return self.auctions.get_active_auctions(limit, offset)

    def get_closed_auctions(self, limit: Optional[int] = 20, offset: int = 0) -> List[Auction]:
        return self.auctions.get_closed_auctions(limit, offset)

    def get_market_prices(self, item_id: str, window_days: Optional[int] = None) -> MarketPrices:
        return self.auctions.get_market_prices(item_id, window_days)

    # ========================================================================
    # AUDIT
    # ========================================================================

    def verify_conservation(
        self,
        expected_gold: int,
        expected_items: Dict[str, int],
    ) -> Dict[str, Any]:
        """
        Check gold and item totals, counting what the auction house holds.

        Requires ledger and inventory with the audit methods of
        bazaar.ledger.Ledger and bazaar.ledger.Inventory.

        Returns:
            Dict with 'valid', 'gold' and 'items' (the per-resource reports)
        """
        gold = self.ledger.verify_conservation(expected_gold, self.auctions.in_flight_gold())
        items = self.inventory.verify_conservation(expected_items, self.auctions.escrowed_items())
        return {
            'valid': gold['valid'] and items['valid'],
            'gold': gold,
            'items': items,
        }

    def pending_event_count(self) -> int:
        return self.scheduler.pending_count()
