"""
bazaar - Trading and Auction Settlement Engine

Moves gold and items between actors under strict consistency guarantees:
two-party trades settled all-or-nothing, escrowed open-bid auctions, market
price statistics and an append-only record store.

Usage:
    from bazaar import TradingEngine, Ledger, Inventory

    ledger = Ledger(initial={"alice": 500})
    inventory = Inventory(initial={"bob": {"iron_sword": 1}})
    engine = TradingEngine(ledger, inventory)

    offer = engine.create_trade_request("alice", "bob", offered_gold=100,
                                        requested_items=["iron_sword"])
    result = engine.accept_trade(offer.data.id, "bob")
    if not result:
        print(result.reason, result.detail)
"""

# Core types
from .core import (
    GoldLedger,
    ItemInventory,
    TradeStatus,
    AuctionStatus,
    ErrorKind,
    Result,
    Shortfall,
    Offer,
    TradeRequest,
    TradeStats,
    Bid,
    Auction,
    PriceSample,
    MarketPrices,
    BazaarError,
    InsufficientFunds,
    InsufficientQuantity,
    PersistenceError,
    SettlementError,
    ESCROW,
    GOLD,
    TRADE_TTL_HOURS,
    BUYOUT_MULTIPLIER,
    DEFAULT_AUCTION_HOURS,
    DEFAULT_PRICE_WINDOW_DAYS,
    SCHEMA_VERSION,
)

# Configuration
from .config import EngineConfig

# Reference ledger and inventory
from .ledger import Ledger, Inventory

# Settlement
from .settlement import (
    Move,
    SettlementPlan,
    PlanBuilder,
    find_shortfalls,
    apply_plan,
    settle,
)

# Records
from .records import (
    Record,
    RecordStore,
    MemoryRecordStore,
    JsonlRecordStore,
    LoadedState,
    fold_records,
)

# Market analytics
from .market import PriceBook, compute_market_prices

# Managers
from .trades import TradeManager, TradeAnalytics, OfferCheck
from .auctions import AuctionHouse

# Scheduling and engine
from .scheduler import Event, EventScheduler, trade_expiry_event, auction_close_event
from .engine import TradingEngine, StepResult


__all__ = [
    # Core
    'GoldLedger', 'ItemInventory',
    'TradeStatus', 'AuctionStatus', 'ErrorKind',
    'Result', 'Shortfall',
    'Offer', 'TradeRequest', 'TradeStats', 'Bid', 'Auction',
    'PriceSample', 'MarketPrices',
    'BazaarError', 'InsufficientFunds', 'InsufficientQuantity',
    'PersistenceError', 'SettlementError',
    'ESCROW', 'GOLD', 'TRADE_TTL_HOURS', 'BUYOUT_MULTIPLIER',
    'DEFAULT_AUCTION_HOURS', 'DEFAULT_PRICE_WINDOW_DAYS', 'SCHEMA_VERSION',
    # Configuration
    'EngineConfig',
    # Ledger
    'Ledger', 'Inventory',
    # Settlement
    'Move', 'SettlementPlan', 'PlanBuilder', 'find_shortfalls', 'apply_plan', 'settle',
    # Records
    'Record', 'RecordStore', 'MemoryRecordStore', 'JsonlRecordStore',
    'LoadedState', 'fold_records',
    # Market
    'PriceBook', 'compute_market_prices',
    # Managers
    'TradeManager', 'TradeAnalytics', 'OfferCheck', 'AuctionHouse',
    # Engine
    'Event', 'EventScheduler', 'trade_expiry_event', 'auction_close_event',
    'TradingEngine', 'StepResult',
]

__version__ = '1.0.0'
