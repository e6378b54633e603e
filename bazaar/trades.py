"""
trades.py - Trade Manager

Lifecycle of two-party trade proposals:

    create_trade_request ──► PENDING ──accept──► ACCEPTED ──settle──► COMPLETED
                               │                              └─────► FAILED
                               ├──decline──► DECLINED
                               ├──cancel───► CANCELLED
                               └──sweep────► EXPIRED

Pending trades live in a repository private to the manager. A trade that
reaches a terminal status is moved, unmutated, into the archive and
appended to the record store. Accepting a trade settles it immediately with
the two-phase protocol from bazaar.settlement: all four legs (gold and items
in both directions) are validated before any of them is applied.
"""

from __future__ import annotations
from dataclasses import dataclass, replace, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging
import uuid

from .config import EngineConfig
from .core import (
    GoldLedger, ItemInventory,
    TradeRequest, TradeStatus, TradeStats, Offer,
    Result, ErrorKind,
    SettlementError,
    ESCROW, paginate,
)
from .market import PriceBook, samples_from_trade
from .records import RecordStore, LoadedState, trade_record, stats_record, persist
from .settlement import PlanBuilder, SettlementPlan, settle, find_shortfalls, failure_kind

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TradeAnalytics:
    total_trades: int = 0
    successful_trades: int = 0
    total_value_traded: int = 0
    success_rate: float = 0.0
    average_trade_value: float = 0.0


@dataclass(frozen=True, slots=True)
class OfferCheck:
    """Whether an actor currently holds what they would offer."""
    valid: bool
    missing_items: Dict[str, int] = field(default_factory=dict)
    gold_shortfall: int = 0


def build_trade_plan(trade: TradeRequest) -> SettlementPlan:
    """The four legs of a trade: offer gold and items one way, request the other."""
    return (PlanBuilder(trade.id)
            .side(trade.initiator, "initiator")
            .side(trade.target, "target")
            .gold(trade.offer.gold, trade.initiator, trade.target)
            .items(trade.offer.items, trade.initiator, trade.target)
            .gold(trade.request.gold, trade.target, trade.initiator)
            .items(trade.request.items, trade.target, trade.initiator)
            .build())


def _as_items(items) -> Tuple[str, ...]:
    if items is None:
        return ()
    if isinstance(items, str):
        return (items,)
    return tuple(items)


class TradeManager:
    """
    Owns pending trades, the trade archive and per-actor trade statistics.

    Thread Safety:
        Not thread-safe. Every mutating call must run to completion on the
        engine's single thread of control; that is what makes the validate
        then apply settlement safe without locks.
    """

    def __init__(
        self,
        ledger: GoldLedger,
        inventory: ItemInventory,
        store: RecordStore,
        clock: Callable[[], datetime],
        config: Optional[EngineConfig] = None,
        price_book: Optional[PriceBook] = None,
        on_pending: Optional[Callable[[TradeRequest], None]] = None,
    ):
        """
        Args:
            ledger: Gold balances to settle against
            inventory: Item holdings to settle against
            store: Durable record store for terminal trades and stats
            clock: Returns the engine's current time
            config: Engine configuration (defaults if omitted)
            price_book: Shared price history fed by completed trades
            on_pending: Called with every newly created trade (used to schedule its expiry)
        """
        self.ledger = ledger
        self.inventory = inventory
        self.store = store
        self.clock = clock
        self.config = config or EngineConfig()
        self.price_book = price_book if price_book is not None else PriceBook()
        self.on_pending = on_pending

        self._pending: Dict[str, TradeRequest] = {}
        self._archive: Dict[str, TradeRequest] = {}
        self._stats: Dict[str, TradeStats] = {}

    # ========================================================================
    # MUTATING OPERATIONS
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
        """
        Propose a trade from initiator to target.

        Returns:
            Result with the new PENDING TradeRequest, or INVALID_OFFER if the
            parties are the same, both sides are empty, or an amount is malformed.
        """
        if not initiator or not target:
            return Result.fail(ErrorKind.INVALID_OFFER, "initiator and target are required")
        if initiator == target:
            return Result.fail(ErrorKind.INVALID_OFFER, "cannot trade with yourself")
        try:
            offer = Offer(_as_items(offered_items), offered_gold)
            request = Offer(_as_items(requested_items), requested_gold)
        except (TypeError, ValueError) as exc:
            return Result.fail(ErrorKind.INVALID_OFFER, str(exc))
        if offer.is_empty() and request.is_empty():
            return Result.fail(ErrorKind.INVALID_OFFER, "offer and request are both empty")

        trade = TradeRequest(
            id=f"trade_{uuid.uuid4().hex[:12]}",
            initiator=initiator,
            target=target,
            offer=offer,
            request=request,
            created_at=self.clock(),
        )
        self._pending[trade.id] = trade
        logger.info("trade %s proposed: %s -> %s", trade.id, initiator, target)
        if self.on_pending is not None:
            self.on_pending(trade)
        return Result.ok(trade)

    def accept_trade(self, trade_id: str, actor: str) -> Result:
        """
        Accept a pending trade as its target and settle it.

        Returns:
            Result with the COMPLETED trade; or NOT_FOUND, INVALID_STATE,
            NOT_AUTHORIZED; or INSUFFICIENT_FUNDS / INSUFFICIENT_QUANTITY with a
            Shortfall detail, in which case the trade is FAILED and no balance
            or inventory was touched.
        """
        trade, failure = self._get_pending(trade_id)
        if failure is not None:
            return failure
        if actor != trade.target:
            return Result.fail(ErrorKind.NOT_AUTHORIZED, f"only {trade.target} can accept {trade_id}")

        now = self.clock()
        accepted = replace(trade, status=TradeStatus.ACCEPTED, accepted_at=now)

        try:
            shortfall = settle(build_trade_plan(accepted), self.ledger, self.inventory)
        except SettlementError as exc:
            kind = failure_kind(exc)
            self._finish(accepted, TradeStatus.FAILED, now, reason=kind)
            return Result.fail(kind, str(exc))

        if shortfall is not None:
            self._finish(accepted, TradeStatus.FAILED, now, reason=shortfall.reason)
            return Result.fail(shortfall.reason, shortfall)

        completed, warnings = self._finish(accepted, TradeStatus.COMPLETED, now)
        return Result.ok(completed, warnings)

    def decline_trade(self, trade_id: str, actor: str) -> Result:
        """Decline a pending trade as its target. No resource moves."""
        trade, failure = self._get_pending(trade_id)
        if failure is not None:
            return failure
        if actor != trade.target:
            return Result.fail(ErrorKind.NOT_AUTHORIZED, f"only {trade.target} can decline {trade_id}")
        declined, warnings = self._finish(trade, TradeStatus.DECLINED, self.clock())
        return Result.ok(declined, warnings)

    def cancel_trade(self, trade_id: str, actor: str) -> Result:
        """Withdraw a pending trade as its initiator. No resource moves."""
        trade, failure = self._get_pending(trade_id)
        if failure is not None:
            return failure
        if actor != trade.initiator:
            return Result.fail(ErrorKind.NOT_AUTHORIZED, f"only {trade.initiator} can cancel {trade_id}")
        cancelled, warnings = self._finish(trade, TradeStatus.CANCELLED, self.clock())
        return Result.ok(cancelled, warnings)

    def expire_trade(self, trade_id: str, now: datetime) -> Optional[TradeRequest]:
        """
        Expire one trade if it is still pending and older than the TTL.

        Returns the expired trade, or None if there was nothing to do.
        """
        trade = self._pending.get(trade_id)
        if trade is None or trade.status is not TradeStatus.PENDING:
            return None
        if now - trade.created_at <= self.config.trade_ttl:
            return None
        expired, _ = self._finish(trade, TradeStatus.EXPIRED, now)
        return expired

    def expire_stale(self, now: datetime) -> List[TradeRequest]:
        """Sweep every pending trade older than the TTL to EXPIRED."""
        expired = []
        for trade_id in sorted(self._pending, key=lambda t: (self._pending[t].created_at, t)):
            result = self.expire_trade(trade_id, now)
            if result is not None:
                expired.append(result)
        return expired

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_trade(self, trade_id: str) -> Optional[TradeRequest]:
        return self._pending.get(trade_id) or self._archive.get(trade_id)

    def get_pending_trades(
        self,
        actor: Optional[str] = None,
        limit: Optional[int] = 20,
        offset: int = 0,
    ) -> List[TradeRequest]:
        """Pending trades (optionally only those involving actor), oldest first."""
        rows = [t for t in self._pending.values() if actor is None or t.involves(actor)]
        rows.sort(key=lambda t: (t.created_at, t.id))
        return paginate(rows, limit, offset)

    def get_user_trade_history(self, actor: str, limit: Optional[int] = 10, offset: int = 0) -> List[TradeRequest]:
        """Completed trades involving actor, newest first."""
        rows = [t for t in self._completed() if t.involves(actor)]
        return paginate(rows, limit, offset)

    def get_trade_listings(self, limit: Optional[int] = 20, offset: int = 0) -> List[TradeRequest]:
        """All completed trades, newest first (market research)."""
        return paginate(self._completed(), limit, offset)

    def get_trade_stats(self, actor: str) -> TradeStats:
        return self._stats.get(actor, TradeStats())

    def get_trade_analytics(self, actor: str) -> TradeAnalytics:
        """Success rate and value figures over every archived trade involving actor."""
        trades = [t for t in self._archive.values() if t.involves(actor)]
        successful = [t for t in trades if t.status is TradeStatus.COMPLETED]
        total_value = sum(t.gold_volume for t in successful)
        return TradeAnalytics(
            total_trades=len(trades),
            successful_trades=len(successful),
            total_value_traded=total_value,
            success_rate=(len(successful) / len(trades) * 100) if trades else 0.0,
            average_trade_value=(total_value / len(successful)) if successful else 0.0,
        )

    def validate_trade_offer(self, actor: str, items: Iterable[str] = (), gold: int = 0) -> OfferCheck:
        """
        Check, without mutating anything, whether actor holds what they would offer.
        """
        offer = Offer(_as_items(items), gold)
        if offer.is_empty():
            return OfferCheck(valid=True)
        plan = (PlanBuilder(f"check_{actor}")
                .gold(offer.gold, actor, ESCROW)
                .items(offer.items, actor, ESCROW)
                .build())
        missing: Dict[str, int] = {}
        gold_short = 0
        for shortfall in find_shortfalls(plan, self.ledger, self.inventory):
            if shortfall.reason is ErrorKind.INSUFFICIENT_FUNDS:
                gold_short = shortfall.required - shortfall.available
            else:
                missing[shortfall.resource] = shortfall.required - shortfall.available
        return OfferCheck(valid=not missing and not gold_short, missing_items=missing, gold_shortfall=gold_short)

    def pending_count(self) -> int:
        return len(self._pending)

    def archived_trades(self) -> List[TradeRequest]:
        return list(self._archive.values())

    # ========================================================================
    # STARTUP
    # ========================================================================

    def restore(self, state: LoadedState) -> None:
        """Rebuild the archive, stats and price history from loaded records."""
        self._archive = dict(sorted(
            state.trades.items(),
            key=lambda kv: (kv[1].terminal_at or kv[1].created_at, kv[0]),
        ))
        self._stats = dict(state.stats)
        for trade in self._archive.values():
            self.price_book.record(samples_from_trade(trade))
        logger.info("restored %d trade(s), stats for %d actor(s)", len(self._archive), len(self._stats))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _get_pending(self, trade_id: str) -> Tuple[Optional[TradeRequest], Optional[Result]]:
        trade = self._pending.get(trade_id)
        if trade is not None:
            return trade, None
        if trade_id in self._archive:
            status = self._archive[trade_id].status.value
            return None, Result.fail(ErrorKind.INVALID_STATE, f"trade {trade_id} is {status}")
        return None, Result.fail(ErrorKind.NOT_FOUND, f"trade {trade_id} not found")

    def _completed(self) -> List[TradeRequest]:
        rows = [t for t in self._archive.values() if t.status is TradeStatus.COMPLETED]
        rows.sort(key=lambda t: (t.terminal_at, t.id), reverse=True)
        return rows

    def _finish(
        self,
        trade: TradeRequest,
        status: TradeStatus,
        now: datetime,
        reason: Optional[ErrorKind] = None,
    ) -> Tuple[TradeRequest, Tuple[ErrorKind, ...]]:
        """Move a trade into a terminal status, archive it and persist it."""
        final = replace(trade, status=status, terminal_at=now, failure_reason=reason)
        del self._pending[trade.id]
        self._archive[final.id] = final

        records = [trade_record(final)]
        if status is TradeStatus.COMPLETED:
            for actor in (final.initiator, final.target):
                self._stats[actor] = self.get_trade_stats(actor).record(final)
                records.append(stats_record(actor, self._stats[actor]))
            self.price_book.record(samples_from_trade(final))

        logger.info("trade %s %s%s", final.id, status.value, f" ({reason.value})" if reason else "")
        return final, persist(self.store, records)
