"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the bazaar settlement engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_conservation.py - Gold and items are neither created nor destroyed
2. test_atomicity.py - All-or-nothing settlement, including compensation
3. test_auction_invariants.py - Bid monotonicity, exact refunds, terminal immutability

These tests use hypothesis for property-based testing.
"""
