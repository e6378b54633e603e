"""
settlement.py - Two-phase settlement of gold and item movements

A settlement is described up front as a SettlementPlan: an immutable tuple of
Moves, each taking a quantity of one resource (GOLD or an item id) from a
source actor to a destination actor. Executing a plan happens in two phases:

1. Validate: every outgoing leg is checked against the current holdings of
   its source before anything is touched. A shortfall aborts the settlement
   with no side effects and reports which actor and resource were short.
2. Apply: all withdrawals run first, then all deposits. If a collaborator
   fails part way (an error or a timeout), the legs already applied are
   reversed in the opposite order, so the settlement is all-or-nothing.

The ESCROW pseudo-actor stands for resources held by the auction house. It
is exempt from validation and never reaches the external ledger or inventory:
a move from ESCROW is a release, a move to ESCROW is a commitment.
"""

from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Callable
import logging

from .core import (
    GoldLedger, ItemInventory, Shortfall, ErrorKind,
    SettlementError, InsufficientFunds, InsufficientQuantity,
    ESCROW, GOLD,
)

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of one resource between two actors.

    Attributes:
        quantity: Amount to transfer (positive int)
        resource: GOLD or an item id
        source: Actor giving the resource (or ESCROW)
        dest: Actor receiving the resource (or ESCROW)
        reference: Id of the trade or auction generating this move
    """
    quantity: int
    resource: str
    source: str
    dest: str
    reference: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.resource or not self.resource.strip():
            raise ValueError("Move resource cannot be empty")
        if not self.reference or not self.reference.strip():
            raise ValueError("Move reference cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.resource}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class SettlementPlan:
    """
    The full set of movements one settlement must apply together.

    Attributes:
        reference: Trade or auction id
        moves: Movements in the order they are validated
        sides: (actor, role) pairs used to label shortfalls ("initiator", "target", ...)
    """
    reference: str
    moves: Tuple[Move, ...]
    sides: Tuple[Tuple[str, str], ...] = ()

    def is_empty(self) -> bool:
        return not self.moves

    def side_of(self, actor: str) -> str:
        return dict(self.sides).get(actor, "")

    def __repr__(self) -> str:
        return f"SettlementPlan({self.reference}: {len(self.moves)} moves)"


class PlanBuilder:
    """
    Accumulates moves for a SettlementPlan, skipping zero quantities.

    Example:
        plan = (PlanBuilder("trade_1")
                .side("alice", "initiator").side("bob", "target")
                .gold(100, "alice", "bob")
                .items(["iron_sword"], "bob", "alice")
                .build())
    """

    def __init__(self, reference: str):
        self.reference = reference
        self._moves: List[Move] = []
        self._sides: List[Tuple[str, str]] = []

    def side(self, actor: str, role: str) -> 'PlanBuilder':
        self._sides.append((actor, role))
        return self

    def gold(self, amount: int, source: str, dest: str) -> 'PlanBuilder':
        if amount:
            self._moves.append(Move(amount, GOLD, source, dest, self.reference))
        return self

    def items(self, item_ids, source: str, dest: str) -> 'PlanBuilder':
        counts: Dict[str, int] = OrderedDict()
        for item_id in item_ids:
            counts[item_id] = counts.get(item_id, 0) + 1
        for item_id, qty in counts.items():
            self._moves.append(Move(qty, item_id, source, dest, self.reference))
        return self

    def build(self) -> SettlementPlan:
        return SettlementPlan(
            reference=self.reference,
            moves=tuple(self._moves),
            sides=tuple(self._sides),
        )


# ============================================================================
# PHASE 1: VALIDATE
# ============================================================================

def required_holdings(plan: SettlementPlan) -> Dict[Tuple[str, str], int]:
    """
    Gross amount each (actor, resource) must hold for the plan to apply.

    Gross rather than net: withdrawals run before deposits, so an actor
    cannot pay with what the same settlement is about to give them.
    ESCROW is excluded.
    """
    required: Dict[Tuple[str, str], int] = OrderedDict()
    for move in plan.moves:
        if move.source == ESCROW:
            continue
        key = (move.source, move.resource)
        required[key] = required.get(key, 0) + move.quantity
    return required


def find_shortfalls(
    plan: SettlementPlan,
    ledger: GoldLedger,
    inventory: ItemInventory,
) -> List[Shortfall]:
    """
    Check every outgoing leg of the plan against current holdings.

    Pure read: nothing is mutated. Shortfalls are returned in the order the
    legs appear in the plan.
    """
    shortfalls = []
    for (actor, resource), needed in required_holdings(plan).items():
        if resource == GOLD:
            held = ledger.get_balance(actor)
        else:
            held = inventory.get_quantity(actor, resource)
        if held < needed:
            shortfalls.append(Shortfall(
                actor=actor,
                resource=resource,
                required=needed,
                available=held,
                side=plan.side_of(actor),
            ))
    return shortfalls


# ============================================================================
# PHASE 2: APPLY
# ============================================================================

def _withdraw(ledger: GoldLedger, inventory: ItemInventory, actor: str, resource: str, qty: int) -> None:
    if resource == GOLD:
        ledger.debit(actor, qty)
    else:
        inventory.remove(actor, resource, qty)


def _deposit(ledger: GoldLedger, inventory: ItemInventory, actor: str, resource: str, qty: int) -> None:
    if resource == GOLD:
        ledger.credit(actor, qty)
    else:
        inventory.add(actor, resource, qty)


def apply_plan(plan: SettlementPlan, ledger: GoldLedger, inventory: ItemInventory) -> None:
    """
    Apply every move of an already validated plan.

    Withdrawals run before deposits. If any collaborator call raises, the
    steps already applied are reversed and SettlementError is raised with
    the original exception chained.

    Raises:
        SettlementError: If the plan could not be applied in full
    """
    steps: List[Tuple[Callable, Callable, str, str, int]] = []
    for move in plan.moves:
        if move.source != ESCROW:
            steps.append((_withdraw, _deposit, move.source, move.resource, move.quantity))
    for move in plan.moves:
        if move.dest != ESCROW:
            steps.append((_deposit, _withdraw, move.dest, move.resource, move.quantity))

    applied: List[Tuple[Callable, str, str, int]] = []
    for do, undo, actor, resource, qty in steps:
        try:
            do(ledger, inventory, actor, resource, qty)
        except Exception as exc:
            logger.error(
                "settlement %s failed applying %s %s for %s: %s; reversing %d step(s)",
                plan.reference, qty, resource, actor, exc, len(applied),
            )
            _compensate(plan, ledger, inventory, applied)
            raise SettlementError(
                f"settlement {plan.reference} aborted while applying {qty} {resource} for {actor}"
            ) from exc
        applied.append((undo, actor, resource, qty))


def _compensate(plan, ledger, inventory, applied) -> None:
    for undo, actor, resource, qty in reversed(applied):
        try:
            undo(ledger, inventory, actor, resource, qty)
        except Exception as exc:
            logger.critical(
                "settlement %s could not reverse %s %s for %s: %s",
                plan.reference, qty, resource, actor, exc,
            )
            raise SettlementError(
                f"settlement {plan.reference} left partially applied; manual repair required"
            ) from exc


def settle(
    plan: SettlementPlan,
    ledger: GoldLedger,
    inventory: ItemInventory,
) -> Optional[Shortfall]:
    """
    Run both phases of a settlement.

    Returns:
        None if the plan was applied in full, or the first Shortfall found in
        phase 1 (in which case nothing was touched).

    Raises:
        SettlementError: If a holdings read failed in phase 1 (nothing was
            touched), or phase 2 failed and was compensated
    """
    try:
        shortfalls = find_shortfalls(plan, ledger, inventory)
    except Exception as exc:
        logger.error("settlement %s could not read holdings: %s", plan.reference, exc)
        raise SettlementError(f"settlement {plan.reference} aborted while reading holdings") from exc
    if shortfalls:
        logger.info("settlement %s rejected: %s", plan.reference, shortfalls[0])
        return shortfalls[0]
    apply_plan(plan, ledger, inventory)
    logger.debug("settlement %s applied %d move(s)", plan.reference, len(plan.moves))
    return None


def failure_kind(exc: SettlementError) -> ErrorKind:
    """ErrorKind to report for a compensated settlement, based on its cause."""
    cause = exc.__cause__
    if isinstance(cause, InsufficientFunds):
        return ErrorKind.INSUFFICIENT_FUNDS
    if isinstance(cause, InsufficientQuantity):
        return ErrorKind.INSUFFICIENT_QUANTITY
    return ErrorKind.INVALID_STATE
