"""
records.py - Durable record store

Append-only history of trades, auctions and per-actor trade statistics.
The engine appends a Record whenever a trade reaches a terminal status and
whenever an auction changes (listing, bid, close), so open auctions and
their escrow survive a restart. Everything is reloaded at startup with
load_all().

Record layout is flat and id-keyed: (kind, key, schema_version, payload),
where payload is a full JSON-compatible snapshot of the entity. The storage
medium is an implementation detail behind the RecordStore protocol:
    - MemoryRecordStore: a list, for tests and ephemeral engines
    - JsonlRecordStore: one JSON object per line in a file, flushed per append
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any, Protocol, Tuple, Union
import json
import logging
import os

from .core import (
    TradeRequest, TradeStatus, Offer,
    Auction, AuctionStatus, Bid,
    TradeStats, ErrorKind, PersistenceError,
    SCHEMA_VERSION,
)

logger = logging.getLogger(__name__)

KIND_TRADE = "trade"
KIND_AUCTION = "auction"
KIND_STATS = "stats"
RECORD_KINDS = (KIND_TRADE, KIND_AUCTION, KIND_STATS)


# ============================================================================
# RECORD
# ============================================================================

@dataclass(frozen=True, slots=True)
class Record:
    kind: str
    key: str
    payload: Dict[str, Any] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION

    def __post_init__(self):
        if self.kind not in RECORD_KINDS:
            raise ValueError(f"Unknown record kind {self.kind!r}")
        if not self.key:
            raise ValueError("Record key cannot be empty")

    def to_json(self) -> str:
        return json.dumps({
            'kind': self.kind,
            'key': self.key,
            'schema_version': self.schema_version,
            'payload': self.payload,
        }, sort_keys=True)

    @classmethod
    def from_json(cls, line: str) -> 'Record':
        raw = json.loads(line)
        return cls(
            kind=raw['kind'],
            key=raw['key'],
            payload=raw.get('payload') or {},
            schema_version=int(raw.get('schema_version', 1)),
        )


# ============================================================================
# ENTITY <-> PAYLOAD
# ============================================================================

def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def trade_to_payload(trade: TradeRequest) -> Dict[str, Any]:
    return {
        'id': trade.id,
        'initiator': trade.initiator,
        'target': trade.target,
        'status': trade.status.value,
        'offer': {'items': list(trade.offer.items), 'gold': trade.offer.gold},
        'request': {'items': list(trade.request.items), 'gold': trade.request.gold},
        'created_at': _ts(trade.created_at),
        'accepted_at': _ts(trade.accepted_at),
        'terminal_at': _ts(trade.terminal_at),
        'failure_reason': trade.failure_reason.value if trade.failure_reason else None,
    }


def trade_from_payload(payload: Dict[str, Any]) -> TradeRequest:
    reason = payload.get('failure_reason')
    return TradeRequest(
        id=payload['id'],
        initiator=payload['initiator'],
        target=payload['target'],
        offer=Offer(tuple(payload['offer']['items']), int(payload['offer']['gold'])),
        request=Offer(tuple(payload['request']['items']), int(payload['request']['gold'])),
        created_at=_parse_ts(payload['created_at']),
        status=TradeStatus(payload['status']),
        accepted_at=_parse_ts(payload.get('accepted_at')),
        terminal_at=_parse_ts(payload.get('terminal_at')),
        failure_reason=ErrorKind(reason) if reason else None,
    )


def auction_to_payload(auction: Auction) -> Dict[str, Any]:
    return {
        'id': auction.id,
        'item_id': auction.item_id,
        'seller': auction.seller,
        'starting_bid': auction.starting_bid,
        'current_bid': auction.current_bid,
        'buyout_price': auction.buyout_price,
        'created_at': _ts(auction.created_at),
        'ends_at': _ts(auction.ends_at),
        'highest_bidder': auction.highest_bidder,
        'bids': [
            {'bidder': b.bidder, 'amount': b.amount, 'timestamp': _ts(b.timestamp)}
            for b in auction.bids
        ],
        'status': auction.status.value,
        'buyer': auction.buyer,
        'final_price': auction.final_price,
        'closed_at': _ts(auction.closed_at),
    }


def auction_from_payload(payload: Dict[str, Any]) -> Auction:
    return Auction(
        id=payload['id'],
        item_id=payload['item_id'],
        seller=payload['seller'],
        starting_bid=int(payload['starting_bid']),
        current_bid=int(payload['current_bid']),
        buyout_price=int(payload['buyout_price']),
        created_at=_parse_ts(payload['created_at']),
        ends_at=_parse_ts(payload['ends_at']),
        highest_bidder=payload.get('highest_bidder'),
        bids=tuple(
            Bid(b['bidder'], int(b['amount']), _parse_ts(b['timestamp']))
            for b in payload.get('bids', [])
        ),
        status=AuctionStatus(payload['status']),
        buyer=payload.get('buyer'),
        final_price=payload.get('final_price'),
        closed_at=_parse_ts(payload.get('closed_at')),
    )


def stats_to_payload(stats: TradeStats) -> Dict[str, Any]:
    return {
        'trades_completed': stats.trades_completed,
        'gold_traded': stats.gold_traded,
        'items_traded': stats.items_traded,
    }


def stats_from_payload(payload: Dict[str, Any]) -> TradeStats:
    return TradeStats(
        trades_completed=int(payload.get('trades_completed', 0)),
        gold_traded=int(payload.get('gold_traded', 0)),
        items_traded=int(payload.get('items_traded', 0)),
    )


def trade_record(trade: TradeRequest) -> Record:
    return Record(KIND_TRADE, trade.id, trade_to_payload(trade))


def auction_record(auction: Auction) -> Record:
    return Record(KIND_AUCTION, auction.id, auction_to_payload(auction))


def stats_record(actor: str, stats: TradeStats) -> Record:
    return Record(KIND_STATS, actor, stats_to_payload(stats))


# ============================================================================
# STORES
# ============================================================================

class RecordStore(Protocol):
    """
    Append-only persisted history.

    append() raises PersistenceError if the record could not be made durable.
    load_all() returns every record in append order.
    """

    def append(self, record: Record) -> None:
        ...

    def load_all(self) -> List[Record]:
        ...


class MemoryRecordStore:
    """RecordStore kept in a list. Nothing survives the process."""

    def __init__(self):
        self.records: List[Record] = []

    def append(self, record: Record) -> None:
        self.records.append(record)

    def load_all(self) -> List[Record]:
        return list(self.records)

    def __len__(self) -> int:
        return len(self.records)


class JsonlRecordStore:
    """
    RecordStore backed by a JSON Lines file.

    Each append writes one line and flushes it; with fsync=True the line is
    also forced to disk before append() returns. A line that cannot be
    parsed on load is skipped with a warning.
    """

    def __init__(self, path: Union[str, Path], fsync: bool = False):
        self.path = Path(path)
        self.fsync = fsync

    def append(self, record: Record) -> None:
        line = record.to_json()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
                fh.flush()
                if self.fsync:
                    os.fsync(fh.fileno())
        except OSError as exc:
            raise PersistenceError(
                f"could not append {record.kind} {record.key} to {self.path}: {exc}"
            ) from exc

    def load_all(self) -> List[Record]:
        if not self.path.exists():
            return []
        records = []
        try:
            with self.path.open("rb") as fh:
                for lineno, raw in enumerate(fh, start=1):
                    if not raw.strip():
                        continue
                    try:
                        records.append(Record.from_json(raw.decode("utf-8")))
                    except (ValueError, KeyError, TypeError) as exc:
                        logger.warning("%s:%d: skipping unreadable record: %s", self.path, lineno, exc)
        except OSError as exc:
            raise PersistenceError(f"could not read {self.path}: {exc}") from exc
        return records


# ============================================================================
# LOADING
# ============================================================================

@dataclass
class LoadedState:
    """Everything the engine rebuilds from a record store at startup."""
    trades: Dict[str, TradeRequest] = field(default_factory=dict)
    auctions: Dict[str, Auction] = field(default_factory=dict)
    stats: Dict[str, TradeStats] = field(default_factory=dict)
    skipped: int = 0


def fold_records(records: List[Record]) -> LoadedState:
    """
    Rebuild the latest snapshot of every entity from an append-only log.

    The last record for each (kind, key) wins. Records written by a newer
    schema version, or whose payload cannot be decoded, are skipped.
    """
    latest: Dict[Tuple[str, str], Record] = {}
    state = LoadedState()
    for record in records:
        if record.schema_version > SCHEMA_VERSION:
            logger.warning(
                "skipping %s %s: schema version %d is newer than %d",
                record.kind, record.key, record.schema_version, SCHEMA_VERSION,
            )
            state.skipped += 1
            continue
        latest[(record.kind, record.key)] = record

    decoders = {
        KIND_TRADE: (trade_from_payload, state.trades),
        KIND_AUCTION: (auction_from_payload, state.auctions),
        KIND_STATS: (stats_from_payload, state.stats),
    }
    for (kind, key), record in latest.items():
        decode, target = decoders[kind]
        try:
            target[key] = decode(record.payload)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("skipping %s %s: cannot decode payload: %s", kind, key, exc)
            state.skipped += 1
    return state


def persist(store: RecordStore, records: List[Record]) -> Tuple[ErrorKind, ...]:
    """
    Append records, converting a store failure into a warning.

    The caller's in-memory mutation has already happened and stays applied;
    every record is attempted, and any failed append is logged and reported
    once as PERSISTENCE_FAILURE.
    """
    failed = False
    for record in records:
        try:
            store.append(record)
        except PersistenceError as exc:
            logger.error("persistence failure for %s %s: %s", record.kind, record.key, exc)
            failed = True
    return (ErrorKind.PERSISTENCE_FAILURE,) if failed else ()
