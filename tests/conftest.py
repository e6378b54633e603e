"""
conftest.py - Shared pytest fixtures for bazaar tests

Provides common fixtures used across unit, functional and conformance tests:
- A settable clock starting at a fixed time
- Funded reference ledger and inventory
- A TradingEngine wired to an in-memory record store
- Expected totals for conservation checks
"""

import pytest

from bazaar import (
    EngineConfig, Ledger, Inventory, MemoryRecordStore,
    TradeManager, AuctionHouse, PriceBook,
)

from tests.fake_ports import (
    Clock, STARTING_GOLD, STARTING_ITEMS, make_engine, total_items,
)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def ledger():
    return Ledger(initial=STARTING_GOLD)


@pytest.fixture
def inventory():
    return Inventory(initial=STARTING_ITEMS)


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def price_book():
    return PriceBook()


@pytest.fixture
def trades(ledger, inventory, store, clock, price_book):
    return TradeManager(ledger, inventory, store, clock, EngineConfig(), price_book=price_book)


@pytest.fixture
def house(ledger, inventory, store, clock, price_book):
    return AuctionHouse(ledger, inventory, store, clock, EngineConfig(), price_book=price_book)


@pytest.fixture
def engine():
    return make_engine()


@pytest.fixture
def expected_gold():
    return sum(STARTING_GOLD.values())


@pytest.fixture
def expected_items():
    return total_items(STARTING_ITEMS)
