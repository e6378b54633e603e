"""
test_trades.py - Unit tests for the TradeManager

Tests cover:
1. create_trade_request validation
2. accept / decline / cancel authorization and state checks
3. Settlement outcomes: completed, failed on shortfall, failed on compensation
4. Expiry
5. Read queries: history, listings, stats, analytics, offer validation
"""

import pytest
from datetime import timedelta

from bazaar import (
    TradeManager, TradeStatus, ErrorKind, Shortfall, TradeStats,
    EngineConfig, GOLD,
)

from tests.fake_ports import FlakyLedger, BrokenStore, snapshot


def propose(trades, initiator="alice", target="bob", **kwargs):
    kwargs.setdefault("offered_gold", 100)
    kwargs.setdefault("requested_items", ["iron_sword"])
    result = trades.create_trade_request(initiator, target, **kwargs)
    assert result.success, result
    return result.data


class TestCreateTradeRequest:

    def test_creates_pending_trade(self, trades, clock):
        trade = propose(trades)
        assert trade.status is TradeStatus.PENDING
        assert trade.id.startswith("trade_")
        assert trade.created_at == clock()
        assert trades.get_trade(trade.id) == trade
        assert trades.pending_count() == 1

    def test_rejects_self_trade(self, trades):
        result = trades.create_trade_request("alice", "alice", offered_gold=10)
        assert result.reason is ErrorKind.INVALID_OFFER

    def test_rejects_empty_offer_and_request(self, trades):
        result = trades.create_trade_request("alice", "bob")
        assert result.reason is ErrorKind.INVALID_OFFER

    @pytest.mark.parametrize("gold", [-1, 2.5, True])
    def test_rejects_malformed_gold(self, trades, gold):
        result = trades.create_trade_request("alice", "bob", offered_gold=gold)
        assert result.reason is ErrorKind.INVALID_OFFER

    def test_rejects_gold_as_item(self, trades):
        result = trades.create_trade_request("alice", "bob", offered_items=[GOLD])
        assert result.reason is ErrorKind.INVALID_OFFER

    @pytest.mark.parametrize("items", [["health_potion", 1], [None], 5])
    def test_rejects_malformed_items(self, trades, items):
        result = trades.create_trade_request("alice", "bob", offered_items=items)
        assert result.reason is ErrorKind.INVALID_OFFER

    def test_single_item_string_is_one_item(self, trades):
        trade = propose(trades, requested_items="iron_sword")
        assert trade.request.items == ("iron_sword",)

    def test_creation_moves_nothing(self, trades, ledger, inventory):
        before = snapshot(ledger, inventory)
        propose(trades, offered_gold=10_000)
        assert snapshot(ledger, inventory) == before

    def test_on_pending_hook(self, ledger, inventory, store, clock):
        seen = []
        manager = TradeManager(ledger, inventory, store, clock, on_pending=seen.append)
        trade = propose(manager)
        assert seen == [trade]


class TestAcceptTrade:

    def test_completes_and_moves_resources(self, trades, ledger, inventory):
        trade = propose(trades)
        result = trades.accept_trade(trade.id, "bob")
        assert result.success
        assert result.data.status is TradeStatus.COMPLETED
        assert result.data.accepted_at is not None
        assert ledger.get_balance("alice") == 50
        assert ledger.get_balance("bob") == 300
        assert inventory.get_quantity("alice", "iron_sword") == 1
        assert inventory.get_quantity("bob", "iron_sword") == 0

    def test_only_target_can_accept(self, trades):
        trade = propose(trades)
        result = trades.accept_trade(trade.id, "alice")
        assert result.reason is ErrorKind.NOT_AUTHORIZED
        assert trades.get_trade(trade.id).status is TradeStatus.PENDING

    def test_unknown_trade(self, trades):
        assert trades.accept_trade("trade_missing", "bob").reason is ErrorKind.NOT_FOUND

    def test_insufficient_funds_fails_trade(self, trades, ledger, inventory):
        trade = propose(trades, initiator="dave", offered_gold=100)
        before = snapshot(ledger, inventory)
        result = trades.accept_trade(trade.id, "bob")
        assert result.reason is ErrorKind.INSUFFICIENT_FUNDS
        assert isinstance(result.detail, Shortfall)
        assert result.detail.actor == "dave"
        assert result.detail.side == "initiator"
        assert snapshot(ledger, inventory) == before
        failed = trades.get_trade(trade.id)
        assert failed.status is TradeStatus.FAILED
        assert failed.failure_reason is ErrorKind.INSUFFICIENT_FUNDS

    def test_insufficient_quantity_names_target(self, trades):
        trade = propose(trades, requested_items=["dragon_scale"])
        result = trades.accept_trade(trade.id, "bob")
        assert result.reason is ErrorKind.INSUFFICIENT_QUANTITY
        assert result.detail.side == "target"

    def test_collaborator_failure_is_compensated(self, inventory, store, clock):
        ledger = FlakyLedger(initial={"alice": 150}, fail_credit_to={"bob"})
        manager = TradeManager(ledger, inventory, store, clock)
        trade = propose(manager)
        before = snapshot(ledger, inventory)
        result = manager.accept_trade(trade.id, "bob")
        assert result.reason is ErrorKind.INVALID_STATE
        assert snapshot(ledger, inventory) == before
        assert manager.get_trade(trade.id).status is TradeStatus.FAILED

    def test_failed_balance_read_fails_trade(self, inventory, store, clock):
        ledger = FlakyLedger(initial={"alice": 150}, fail_balance_of={"alice"})
        manager = TradeManager(ledger, inventory, store, clock)
        trade = propose(manager)
        before = snapshot(ledger, inventory)
        result = manager.accept_trade(trade.id, "bob")
        assert result.reason is ErrorKind.INVALID_STATE
        assert snapshot(ledger, inventory) == before
        assert manager.get_trade(trade.id).status is TradeStatus.FAILED
        assert manager.pending_count() == 0
        assert manager.decline_trade(trade.id, "bob").reason is ErrorKind.INVALID_STATE

    def test_terminal_trade_rejects_further_actions(self, trades):
        trade = propose(trades)
        trades.accept_trade(trade.id, "bob")
        for call in (trades.accept_trade, trades.decline_trade):
            assert call(trade.id, "bob").reason is ErrorKind.INVALID_STATE
        assert trades.cancel_trade(trade.id, "alice").reason is ErrorKind.INVALID_STATE

    def test_completion_updates_stats(self, trades):
        trade = propose(trades, offered_items=["health_potion", "health_potion"])
        trades.accept_trade(trade.id, "bob")
        expected = TradeStats(trades_completed=1, gold_traded=100, items_traded=3)
        assert trades.get_trade_stats("alice") == expected
        assert trades.get_trade_stats("bob") == expected
        assert trades.get_trade_stats("carol") == TradeStats()

    def test_completion_records_prices(self, trades, price_book):
        trade = propose(trades)
        trades.accept_trade(trade.id, "bob")
        assert [(s.item_id, s.price) for s in price_book.samples()] == [("iron_sword", 100)]

    def test_persistence_failure_is_a_warning(self, ledger, inventory, clock):
        manager = TradeManager(ledger, inventory, BrokenStore(), clock)
        trade = propose(manager)
        result = manager.accept_trade(trade.id, "bob")
        assert result.success
        assert result.warnings == (ErrorKind.PERSISTENCE_FAILURE,)
        assert ledger.get_balance("alice") == 50


class TestDeclineAndCancel:

    def test_target_declines(self, trades, ledger, inventory):
        trade = propose(trades)
        before = snapshot(ledger, inventory)
        result = trades.decline_trade(trade.id, "bob")
        assert result.data.status is TradeStatus.DECLINED
        assert result.data.terminal_at is not None
        assert snapshot(ledger, inventory) == before
        assert trades.pending_count() == 0

    def test_initiator_cannot_decline(self, trades):
        trade = propose(trades)
        assert trades.decline_trade(trade.id, "alice").reason is ErrorKind.NOT_AUTHORIZED

    def test_initiator_cancels(self, trades):
        trade = propose(trades)
        assert trades.cancel_trade(trade.id, "alice").data.status is TradeStatus.CANCELLED

    def test_target_cannot_cancel(self, trades):
        trade = propose(trades)
        assert trades.cancel_trade(trade.id, "bob").reason is ErrorKind.NOT_AUTHORIZED

    def test_archived_snapshot_is_unchanged(self, trades):
        trade = propose(trades)
        declined = trades.decline_trade(trade.id, "bob").data
        trades.cancel_trade(trade.id, "alice")
        assert trades.get_trade(trade.id) is declined


class TestExpiry:

    def test_expires_after_ttl(self, trades, clock):
        trade = propose(trades)
        assert trades.expire_stale(clock() + timedelta(hours=23)) == []
        expired = trades.expire_stale(clock() + timedelta(hours=24, seconds=1))
        assert [t.id for t in expired] == [trade.id]
        assert expired[0].status is TradeStatus.EXPIRED

    def test_not_expired_at_exactly_ttl(self, trades, clock):
        # expiry needs an age strictly greater than the TTL
        trade = propose(trades)
        assert trades.expire_stale(clock() + timedelta(hours=24)) == []
        assert trades.get_trade(trade.id).status is TradeStatus.PENDING

    def test_expire_trade_ignores_settled(self, trades, clock):
        trade = propose(trades)
        trades.accept_trade(trade.id, "bob")
        assert trades.expire_trade(trade.id, clock() + timedelta(days=2)) is None

    def test_custom_ttl(self, ledger, inventory, store, clock):
        manager = TradeManager(ledger, inventory, store, clock, EngineConfig(trade_ttl_hours=1))
        propose(manager)
        assert len(manager.expire_stale(clock() + timedelta(hours=1, minutes=1))) == 1


class TestQueries:

    def test_history_newest_first_with_pagination(self, trades, clock):
        ids = []
        for _ in range(3):
            trade = propose(trades, offered_gold=10, requested_items=(), requested_gold=0)
            trades.accept_trade(trade.id, "bob")
            ids.append(trade.id)
            clock.advance(minutes=1)
        history = trades.get_user_trade_history("alice")
        assert [t.id for t in history] == list(reversed(ids))
        assert [t.id for t in trades.get_user_trade_history("alice", limit=1, offset=1)] == [ids[1]]
        assert trades.get_user_trade_history("carol") == []

    def test_history_excludes_failed(self, trades):
        trade = propose(trades, initiator="dave")
        trades.accept_trade(trade.id, "bob")
        assert trades.get_user_trade_history("dave") == []

    def test_pending_trades_filter(self, trades):
        a = propose(trades)
        propose(trades, initiator="carol", target="alice", offered_gold=5, requested_items=())
        b = propose(trades, initiator="carol", target="dave", offered_gold=5, requested_items=())
        assert {t.id for t in trades.get_pending_trades("bob")} == {a.id}
        assert len(trades.get_pending_trades("alice")) == 2
        assert b in trades.get_pending_trades()

    def test_trade_listings(self, trades):
        trade = propose(trades)
        trades.accept_trade(trade.id, "bob")
        assert [t.id for t in trades.get_trade_listings()] == [trade.id]

    def test_analytics(self, trades):
        ok = propose(trades)
        trades.accept_trade(ok.id, "bob")
        declined = propose(trades, offered_gold=20, requested_items=["leather_armor"])
        trades.decline_trade(declined.id, "bob")
        analytics = trades.get_trade_analytics("alice")
        assert analytics.total_trades == 2
        assert analytics.successful_trades == 1
        assert analytics.total_value_traded == 100
        assert analytics.success_rate == 50.0
        assert analytics.average_trade_value == 100.0

    def test_validate_trade_offer(self, trades, ledger, inventory):
        before = snapshot(ledger, inventory)
        check = trades.validate_trade_offer("dave", ["iron_sword", "iron_sword"], 100)
        assert not check.valid
        assert check.missing_items == {"iron_sword": 2}
        assert check.gold_shortfall == 60
        assert trades.validate_trade_offer("bob", ["iron_sword"], 200).valid
        assert snapshot(ledger, inventory) == before
