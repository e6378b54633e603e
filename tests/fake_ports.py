"""
fake_ports.py - Test helpers for the ledger and inventory ports

Provides a settable clock, shared starting balances, and ledger/inventory
doubles that fail on demand so compensation paths can be exercised without
a real economy behind them.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set, Tuple

from bazaar import (
    TradingEngine, Ledger, Inventory, PersistenceError, Record,
)


START = datetime(2025, 1, 1, 12, 0, 0)

STARTING_GOLD = {"alice": 150, "bob": 200, "carol": 500, "dave": 40}
STARTING_ITEMS = {
    "alice": {"health_potion": 3},
    "bob": {"iron_sword": 1, "leather_armor": 2},
    "carol": {"dragon_scale": 1, "iron_sword": 1},
}


class Clock:
    """Mutable clock for driving managers directly (engine tests use step())."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def total_items(items: Dict[str, Dict[str, int]]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for holdings in items.values():
        for item_id, qty in holdings.items():
            totals[item_id] = totals.get(item_id, 0) + qty
    return totals


def make_engine(**kwargs: Any) -> TradingEngine:
    """Engine over freshly funded reference ports, starting at START."""
    ledger = kwargs.pop("ledger", None) or Ledger(initial=STARTING_GOLD)
    inventory = kwargs.pop("inventory", None) or Inventory(initial=STARTING_ITEMS)
    kwargs.setdefault("start_time", START)
    return TradingEngine(ledger, inventory, **kwargs)


def snapshot(ledger: Ledger, inventory: Inventory) -> Tuple[Dict[str, int], Dict[Tuple[str, str], int]]:
    return ledger.snapshot(), inventory.snapshot()


class FlakyLedger(Ledger):
    """
    Ledger whose reads, credits or debits raise for selected actors.

    Example:
        ledger = FlakyLedger(initial={"alice": 100}, fail_credit_to={"bob"})
        ledger.credit("bob", 10)  # raises TimeoutError
    """

    def __init__(
        self,
        initial: Optional[Dict[str, int]] = None,
        fail_credit_to: Optional[Set[str]] = None,
        fail_debit_from: Optional[Set[str]] = None,
        fail_balance_of: Optional[Set[str]] = None,
        error: type = TimeoutError,
    ):
        self.fail_credit_to: Set[str] = set()
        self.fail_debit_from: Set[str] = set()
        self.fail_balance_of: Set[str] = set()
        self.error = error
        super().__init__(initial=initial)
        # faults apply only after the initial balances are seeded
        self.fail_credit_to.update(fail_credit_to or ())
        self.fail_debit_from.update(fail_debit_from or ())
        self.fail_balance_of.update(fail_balance_of or ())

    def get_balance(self, actor: str) -> int:
        if actor in self.fail_balance_of:
            raise self.error(f"balance read for {actor} timed out")
        return super().get_balance(actor)

    def credit(self, actor: str, amount: int) -> None:
        if actor in self.fail_credit_to:
            raise self.error(f"credit to {actor} timed out")
        super().credit(actor, amount)

    def debit(self, actor: str, amount: int) -> None:
        if actor in self.fail_debit_from:
            raise self.error(f"debit from {actor} timed out")
        super().debit(actor, amount)


class FlakyInventory(Inventory):
    """Inventory whose add() or quantity reads raise for selected actors."""

    def __init__(
        self,
        initial: Optional[Dict[str, Dict[str, int]]] = None,
        fail_add_to: Optional[Set[str]] = None,
        fail_quantity_of: Optional[Set[str]] = None,
        error: type = TimeoutError,
    ):
        self.fail_add_to: Set[str] = set()
        self.fail_quantity_of: Set[str] = set()
        self.error = error
        super().__init__(initial=initial)
        self.fail_add_to.update(fail_add_to or ())
        self.fail_quantity_of.update(fail_quantity_of or ())

    def get_quantity(self, actor: str, item_id: str) -> int:
        if actor in self.fail_quantity_of:
            raise self.error(f"inventory read for {actor} timed out")
        return super().get_quantity(actor, item_id)

    def add(self, actor: str, item_id: str, qty: int = 1) -> None:
        if actor in self.fail_add_to:
            raise self.error(f"add to {actor} timed out")
        super().add(actor, item_id, qty)


class BrokenStore:
    """RecordStore whose appends always fail."""

    def __init__(self):
        self.attempts = 0

    def append(self, record: Record) -> None:
        self.attempts += 1
        raise PersistenceError("disk full")

    def load_all(self):
        return []
