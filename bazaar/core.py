"""
Core types for the bazaar settlement engine.

This module provides the foundational data structures shared by every component:
1. Protocols: GoldLedger and ItemInventory, the external resources the engine settles against
2. Immutable data structures: Offer, TradeRequest, Bid, Auction, TradeStats, PriceSample
3. Result types: Result, Shortfall and the ErrorKind enum returned across the engine boundary
4. Exceptions: BazaarError and domain-specific error types
5. Constants: statuses, reserved actor ids, engine defaults

Entities are frozen. A status transition builds a new instance with
dataclasses.replace(), so nothing held by a caller ever changes under it.
"""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved pseudo-actor for resources held by the auction house while a
# listing is open. Escrow is exempt from balance validation and is never
# passed to the external ledger or inventory.
ESCROW = "escrow"

# Resource name used by settlement moves for currency. Every other resource
# name is an item id.
GOLD = "gold"

# Engine defaults (overridable through EngineConfig).
TRADE_TTL_HOURS = 24
BUYOUT_MULTIPLIER = 3
DEFAULT_AUCTION_HOURS = 24
DEFAULT_PRICE_WINDOW_DAYS = 7

# Version tag written into every persisted record.
SCHEMA_VERSION = 1


# ============================================================================
# ENUMS
# ============================================================================

class TradeStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (TradeStatus.PENDING, TradeStatus.ACCEPTED)


class AuctionStatus(Enum):
    ACTIVE = "active"
    ENDED = "ended"
    SOLD = "sold"

    @property
    def is_terminal(self) -> bool:
        return self is not AuctionStatus.ACTIVE


class ErrorKind(Enum):
    """
    Reason carried by a failed Result.

    PERSISTENCE_FAILURE is non-fatal: it only ever appears in Result.warnings
    of an otherwise successful operation.
    """
    NOT_FOUND = "not_found"
    NOT_AUTHORIZED = "not_authorized"
    INVALID_STATE = "invalid_state"
    INVALID_OFFER = "invalid_offer"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_QUANTITY = "insufficient_quantity"
    AUCTION_CLOSED = "auction_closed"
    BID_TOO_LOW = "bid_too_low"
    PERSISTENCE_FAILURE = "persistence_failure"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class BazaarError(Exception):
    """Base exception for all engine and collaborator errors."""
    pass


class InsufficientFunds(BazaarError):
    """Raised when a debit would take an actor's gold balance below zero."""
    pass


class InsufficientQuantity(BazaarError):
    """Raised when a removal would take an actor's item quantity below zero."""
    pass


class PersistenceError(BazaarError):
    """Raised by a record store when an append cannot be made durable."""
    pass


class SettlementError(BazaarError):
    """Raised when the apply phase of a settlement had to be compensated."""
    pass


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class GoldLedger(Protocol):
    """
    Per-actor currency balances.

    Balances are non-negative integers. Unknown actors have a balance of 0.
    Calls are synchronous and must be safe under sequential access.
    """

    def get_balance(self, actor: str) -> int:
        ...

    def credit(self, actor: str, amount: int) -> None:
        ...

    def debit(self, actor: str, amount: int) -> None:
        """Remove gold from an actor. Raises InsufficientFunds on shortfall."""
        ...


@runtime_checkable
class ItemInventory(Protocol):
    """Per-actor item quantities. Quantities are non-negative integers."""

    def get_quantity(self, actor: str, item_id: str) -> int:
        ...

    def add(self, actor: str, item_id: str, qty: int = 1) -> None:
        ...

    def remove(self, actor: str, item_id: str, qty: int = 1) -> None:
        """Remove items from an actor. Raises InsufficientQuantity on shortfall."""
        ...


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Shortfall:
    """
    Which side of a settlement could not cover its leg.

    Attributes:
        actor: Actor that is short
        resource: GOLD or an item id
        required: Amount the settlement needs from the actor
        available: Amount the actor holds
        side: Role of the actor in the settlement ("initiator", "target", "bidder", ...)
    """
    actor: str
    resource: str
    required: int
    available: int
    side: str = ""

    @property
    def reason(self) -> ErrorKind:
        if self.resource == GOLD:
            return ErrorKind.INSUFFICIENT_FUNDS
        return ErrorKind.INSUFFICIENT_QUANTITY

    def __str__(self) -> str:
        who = f"{self.side} {self.actor}" if self.side else self.actor
        return f"{who} needs {self.required} {self.resource}, holds {self.available}"


@dataclass(frozen=True, slots=True)
class Result:
    """
    Discriminated outcome of an engine operation.

    success=True carries data; success=False carries a reason and an optional
    detail (a Shortfall, or a short message). warnings lists non-fatal
    conditions such as ErrorKind.PERSISTENCE_FAILURE.
    """
    success: bool
    data: Any = None
    reason: Optional[ErrorKind] = None
    detail: Any = None
    warnings: Tuple[ErrorKind, ...] = ()

    @classmethod
    def ok(cls, data: Any = None, warnings: Tuple[ErrorKind, ...] = ()) -> 'Result':
        return cls(success=True, data=data, warnings=tuple(warnings))

    @classmethod
    def fail(cls, reason: ErrorKind, detail: Any = None) -> 'Result':
        return cls(success=False, reason=reason, detail=detail)

    def __bool__(self) -> bool:
        return self.success

    def __repr__(self) -> str:
        if self.success:
            suffix = f", warnings={[w.value for w in self.warnings]}" if self.warnings else ""
            return f"Result(ok{suffix})"
        return f"Result(fail={self.reason.value}, detail={self.detail!s})"


# ============================================================================
# TRADE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Offer:
    """
    One side of a trade: a multiset of item ids plus an amount of gold.

    Items are kept as a sorted tuple so that two offers with the same
    contents compare equal regardless of the order they were listed in.
    """
    items: Tuple[str, ...] = ()
    gold: int = 0

    def __post_init__(self):
        items = tuple(self.items)
        if isinstance(self.gold, bool) or not isinstance(self.gold, int):
            raise ValueError(f"Offer gold must be int, got {type(self.gold).__name__}")
        if self.gold < 0:
            raise ValueError(f"Offer gold cannot be negative, got {self.gold}")
        for item_id in items:
            if not isinstance(item_id, str) or not item_id.strip():
                raise ValueError("Offer item ids cannot be empty")
            if item_id == GOLD:
                raise ValueError(f"{GOLD!r} is reserved and cannot be an item id")
        object.__setattr__(self, 'items', tuple(sorted(items)))

    def is_empty(self) -> bool:
        return not self.items and self.gold == 0

    def item_counts(self) -> Dict[str, int]:
        """Quantity required per item id."""
        return dict(Counter(self.items))


@dataclass(frozen=True, slots=True)
class TradeRequest:
    """
    A two-party trade proposal.

    The initiator gives `offer` and receives `request`; the target does the
    reverse. terminal_at is set on the transition into any terminal status.
    """
    id: str
    initiator: str
    target: str
    offer: Offer
    request: Offer
    created_at: datetime
    status: TradeStatus = TradeStatus.PENDING
    accepted_at: Optional[datetime] = None
    terminal_at: Optional[datetime] = None
    failure_reason: Optional[ErrorKind] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def gold_volume(self) -> int:
        return self.offer.gold + self.request.gold

    @property
    def item_volume(self) -> int:
        return len(self.offer.items) + len(self.request.items)

    def involves(self, actor: str) -> bool:
        return actor in (self.initiator, self.target)

    def __repr__(self) -> str:
        return (f"TradeRequest({self.id}: {self.initiator}->{self.target}, "
                f"{self.status.value}, offer={list(self.offer.items)}+{self.offer.gold}g, "
                f"request={list(self.request.items)}+{self.request.gold}g)")


@dataclass(frozen=True, slots=True)
class TradeStats:
    """Per-actor aggregate of completed trades."""
    trades_completed: int = 0
    gold_traded: int = 0
    items_traded: int = 0

    def record(self, trade: TradeRequest) -> 'TradeStats':
        return TradeStats(
            trades_completed=self.trades_completed + 1,
            gold_traded=self.gold_traded + trade.gold_volume,
            items_traded=self.items_traded + trade.item_volume,
        )


# ============================================================================
# AUCTION DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Bid:
    bidder: str
    amount: int
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class Auction:
    """
    An open-bid listing for a single escrowed item.

    Attributes:
        id: Auction identifier
        item_id: Item held in escrow for the duration of the listing
        seller: Actor the item came from and the sale proceeds go to
        starting_bid: Opening price; the first bid must exceed it
        current_bid: Highest committed bid (starting_bid while nobody has bid)
        buyout_price: Price at which any buyer can close the auction at once
        created_at / ends_at: Listing window
        highest_bidder: Actor whose gold is currently committed, if any
        bids: Ordered bid history
        status: ACTIVE until sold or ended
        buyer / final_price / closed_at: Set on the terminal transition
    """
    id: str
    item_id: str
    seller: str
    starting_bid: int
    current_bid: int
    buyout_price: int
    created_at: datetime
    ends_at: datetime
    highest_bidder: Optional[str] = None
    bids: Tuple[Bid, ...] = ()
    status: AuctionStatus = AuctionStatus.ACTIVE
    buyer: Optional[str] = None
    final_price: Optional[int] = None
    closed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_expired(self, now: datetime) -> bool:
        return now > self.ends_at

    @property
    def committed_gold(self) -> int:
        """Gold held in escrow for the highest bidder (0 when nobody has bid)."""
        if self.status is AuctionStatus.ACTIVE and self.highest_bidder is not None:
            return self.current_bid
        return 0

    def __repr__(self) -> str:
        bidder = self.highest_bidder or "-"
        return (f"Auction({self.id}: {self.item_id} by {self.seller}, {self.status.value}, "
                f"bid={self.current_bid} ({bidder}), buyout={self.buyout_price})")


# ============================================================================
# MARKET DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceSample:
    """A gold price observed for an item in a completed trade or auction sale."""
    item_id: str
    price: int
    timestamp: datetime
    source: str = "trade"


@dataclass(frozen=True, slots=True)
class MarketPrices:
    item_id: str
    average: int = 0
    min: int = 0
    max: int = 0
    sample_count: int = 0


def paginate(rows: List[Any], limit: Optional[int], offset: int = 0) -> List[Any]:
    """Slice a result list with limit/offset semantics (limit=None means no limit)."""
    if offset < 0:
        raise ValueError(f"offset cannot be negative, got {offset}")
    if limit is None:
        return rows[offset:]
    if limit < 0:
        raise ValueError(f"limit cannot be negative, got {limit}")
    return rows[offset:offset + limit]
