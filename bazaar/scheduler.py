"""
scheduler.py - Expiry Scheduler

Heap-based scheduling of the time-driven transitions the engine performs on
its own: trade expiry and auction close.

Core concepts:
1. Event: Immutable description of what should happen to which entity and when
2. EventScheduler: Priority queue for due event retrieval
3. Handlers: Plain functions (entity_id, now) -> retired entity or None

Events are only a fast path. A handler that finds nothing to do (the trade
was already accepted, the auction was bought out) returns None and the event
is dropped; the engine's polling sweep catches anything the heap missed.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import heapq
import logging

logger = logging.getLogger(__name__)

TRADE_EXPIRY = "trade_expiry"
AUCTION_CLOSE = "auction_close"


# ============================================================================
# EVENT DATA STRUCTURE
# ============================================================================

@dataclass(frozen=True, slots=True)
class Event:
    """
    Immutable scheduled transition.

    Sorting: by trigger_time, then priority (lower=first), then entity_id.

    Attributes:
        trigger_time: Earliest time the handler may act
        priority: Execution order within the same timestamp (0=first)
        entity_id: Trade or auction id
        action: Handler key (TRADE_EXPIRY, AUCTION_CLOSE)
    """
    trigger_time: datetime
    priority: int = 0
    entity_id: str = ""
    action: str = ""

    def __lt__(self, other: 'Event') -> bool:
        if self.trigger_time != other.trigger_time:
            return self.trigger_time < other.trigger_time
        if self.priority != other.priority:
            return self.priority < other.priority
        return self.entity_id < other.entity_id

    @property
    def event_id(self) -> str:
        return f"{self.action}:{self.entity_id}:{self.trigger_time.isoformat()}"


# Handler type: (entity_id, now) -> retired entity, or None if nothing happened
EventHandler = Callable[[str, datetime], Optional[Any]]


# ============================================================================
# EVENT SCHEDULER
# ============================================================================

class EventScheduler:
    """
    Priority queue of expiry events.

    Not thread-safe: step() must run on the same thread of control as every
    other engine operation.
    """

    def __init__(self):
        self._heap: List[Event] = []
        self._handlers: Dict[str, EventHandler] = {}
        self._queued: set = set()

    def register(self, action: str, handler: EventHandler) -> None:
        """Register the handler for an action type."""
        self._handlers[action] = handler

    def schedule(self, event: Event) -> str:
        """
        Add an event to the queue. Scheduling the same event twice is a no-op.

        Returns the event_id.
        """
        if event.event_id not in self._queued:
            heapq.heappush(self._heap, event)
            self._queued.add(event.event_id)
        return event.event_id

    def get_due(self, as_of: datetime) -> List[Event]:
        """Pop every event with trigger_time <= as_of, in execution order."""
        due = []
        while self._heap and self._heap[0].trigger_time <= as_of:
            event = heapq.heappop(self._heap)
            self._queued.discard(event.event_id)
            due.append(event)
        return due

    def execute(self, event: Event, now: datetime) -> Optional[Any]:
        """
        Run one event through its handler.

        Raises:
            KeyError: If no handler is registered for the event's action
        """
        handler = self._handlers.get(event.action)
        if handler is None:
            raise KeyError(f"no handler registered for {event.action!r}")
        return handler(event.entity_id, now)

    def step(self, as_of: datetime) -> List[Any]:
        """Process all due events and return the entities they retired."""
        retired = []
        for event in self.get_due(as_of):
            result = self.execute(event, as_of)
            if result is not None:
                retired.append(result)
            else:
                logger.debug("event %s had nothing to do", event.event_id)
        return retired

    def pending_count(self) -> int:
        return len(self._heap)

    def peek_next(self) -> Optional[Event]:
        return self._heap[0] if self._heap else None


# ============================================================================
# EVENT FACTORY FUNCTIONS
# ============================================================================

def trade_expiry_event(trade_id: str, expires_at: datetime) -> Event:
    return Event(trigger_time=expires_at, priority=0, entity_id=trade_id, action=TRADE_EXPIRY)


def auction_close_event(auction_id: str, ends_at: datetime) -> Event:
    """
    Auctions close strictly after ends_at, so the handler may find the
    auction still open when fired exactly at ends_at; the next tick or the
    polling sweep closes it.
    """
    return Event(trigger_time=ends_at, priority=10, entity_id=auction_id, action=AUCTION_CLOSE)
