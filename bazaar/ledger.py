"""
ledger.py - In-memory gold ledger and item inventory

Reference implementations of the two external resources the engine settles
against (GoldLedger and ItemInventory in bazaar.core). A host application
normally plugs in its own economy and character stores; these classes let the
engine run standalone and give the tests a ledger whose totals can be audited.

Key properties:
    - Balances and quantities are non-negative integers, always
    - Every mutation is validated before it is applied
    - total_supply() and verify_conservation() audit the conservation laws
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, Optional, Any, List, Tuple
import logging

from .core import InsufficientFunds, InsufficientQuantity

logger = logging.getLogger(__name__)


def _check_amount(amount: int, what: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"{what} must be int, got {type(amount).__name__}")
    if amount <= 0:
        raise ValueError(f"{what} must be positive, got {amount}")


class Ledger:
    """
    Per-actor gold balances.

    Implements the GoldLedger protocol. Actors do not need to be registered:
    an actor that has never been credited has a balance of 0.

    Thread Safety:
        Not thread-safe. The engine drives it from a single thread of control.

    Example:
        ledger = Ledger()
        ledger.credit("alice", 150)
        ledger.debit("alice", 100)
        ledger.get_balance("alice")  # 50
    """

    def __init__(self, name: str = "gold", initial: Optional[Dict[str, int]] = None):
        self.name = name
        self.balances: Dict[str, int] = defaultdict(int)
        for actor, amount in (initial or {}).items():
            if amount:
                self.credit(actor, amount)

    # ========================================================================
    # GoldLedger PROTOCOL
    # ========================================================================

    def get_balance(self, actor: str) -> int:
        return self.balances.get(actor, 0)

    def credit(self, actor: str, amount: int) -> None:
        _check_amount(amount, "credit amount")
        self.balances[actor] += amount

    def debit(self, actor: str, amount: int) -> None:
        """
        Remove gold from an actor.

        Raises:
            InsufficientFunds: If the actor holds less than amount
        """
        _check_amount(amount, "debit amount")
        current = self.balances.get(actor, 0)
        if current < amount:
            raise InsufficientFunds(f"{actor} holds {current} gold, cannot debit {amount}")
        self.balances[actor] = current - amount

    # ========================================================================
    # AUDIT
    # ========================================================================

    def total_supply(self) -> int:
        """Total gold across all actors (summed in sorted actor order)."""
        return sum(self.balances[a] for a in sorted(self.balances))

    def snapshot(self) -> Dict[str, int]:
        """Non-zero balances, keyed by actor."""
        return {a: b for a, b in sorted(self.balances.items()) if b}

    def verify_conservation(self, expected_supply: int, in_flight: int = 0) -> Dict[str, Any]:
        """
        Check that ledger gold plus gold in flight equals expected_supply.

        Returns:
            Dict with 'valid', 'supply', 'in_flight' and 'difference'
        """
        supply = self.total_supply()
        difference = supply + in_flight - expected_supply
        negative = [a for a, b in self.balances.items() if b < 0]
        return {
            'valid': difference == 0 and not negative,
            'supply': supply,
            'in_flight': in_flight,
            'difference': difference,
            'negative_balances': negative,
        }


class Inventory:
    """
    Per-actor item quantities.

    Implements the ItemInventory protocol. Items with quantity 0 are dropped
    from an actor's inventory so snapshots stay compact.
    """

    def __init__(self, name: str = "items", initial: Optional[Dict[str, Dict[str, int]]] = None):
        self.name = name
        self.holdings: Dict[str, Dict[str, int]] = defaultdict(dict)
        for actor, items in (initial or {}).items():
            for item_id, qty in items.items():
                if qty:
                    self.add(actor, item_id, qty)

    # ========================================================================
    # ItemInventory PROTOCOL
    # ========================================================================

    def get_quantity(self, actor: str, item_id: str) -> int:
        return self.holdings.get(actor, {}).get(item_id, 0)

    def add(self, actor: str, item_id: str, qty: int = 1) -> None:
        _check_amount(qty, "item quantity")
        if not item_id:
            raise ValueError("item_id cannot be empty")
        items = self.holdings[actor]
        items[item_id] = items.get(item_id, 0) + qty

    def remove(self, actor: str, item_id: str, qty: int = 1) -> None:
        """
        Remove items from an actor.

        Raises:
            InsufficientQuantity: If the actor holds fewer than qty
        """
        _check_amount(qty, "item quantity")
        current = self.get_quantity(actor, item_id)
        if current < qty:
            raise InsufficientQuantity(f"{actor} holds {current} x {item_id}, cannot remove {qty}")
        remaining = current - qty
        if remaining:
            self.holdings[actor][item_id] = remaining
        else:
            del self.holdings[actor][item_id]

    # ========================================================================
    # AUDIT
    # ========================================================================

    def get_items(self, actor: str) -> Dict[str, int]:
        return dict(self.holdings.get(actor, {}))

    def total_supply(self, item_id: str) -> int:
        return sum(items.get(item_id, 0) for _, items in sorted(self.holdings.items()))

    def item_ids(self) -> List[str]:
        return sorted({i for items in self.holdings.values() for i in items})

    def snapshot(self) -> Dict[Tuple[str, str], int]:
        """Non-zero quantities keyed by (actor, item_id)."""
        return {
            (actor, item_id): qty
            for actor, items in sorted(self.holdings.items())
            for item_id, qty in sorted(items.items())
            if qty
        }

    def verify_conservation(
        self,
        expected_supplies: Dict[str, int],
        escrowed: Optional[Dict[str, int]] = None,
    ) -> Dict[str, Any]:
        """
        Check per-item totals (inventory plus escrow) against expected_supplies.

        Returns:
            Dict with 'valid', 'supplies' and 'discrepancies'
        """
        escrowed = escrowed or {}
        supplies = {}
        discrepancies = []
        for item_id in sorted(set(expected_supplies) | set(self.item_ids()) | set(escrowed)):
            actual = self.total_supply(item_id) + escrowed.get(item_id, 0)
            supplies[item_id] = actual
            expected = expected_supplies.get(item_id, 0)
            if actual != expected:
                discrepancies.append({
                    'item_id': item_id,
                    'expected': expected,
                    'actual': actual,
                    'difference': actual - expected,
                })
        if discrepancies:
            logger.debug("inventory %s: conservation discrepancies %s", self.name, discrepancies)
        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }
