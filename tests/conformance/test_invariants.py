"""
Ledger Invariant Conformance Tests

INVARIANT: Ledger-wide accounting holds after every operation, accepted or
rejected.

    ∀ operation sequences S, ∀ prefixes P of S:
        total_borrow = Σ debt(p) for ACTIVE positions p
        tvl(a) = Σ collateral(p, a) ≤ balance(protocol, a)
        isolated positions hold only their bound asset
        token balances are double-entry consistent

SOLVENCY: while prices and time stand still, no ACTIVE position owes more
than its credit limit.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lendledger import LendingError, PositionStatus

from tests.market import (
    MARKET_OPERATIONS, STATIC_OPERATIONS, USERS,
    apply_operation, create_market, open_positions,
)


def operations(kinds, max_size=25):
    return st.lists(
        st.tuples(st.sampled_from(kinds), st.sampled_from(USERS), st.integers(min_value=1, max_value=100)),
        min_size=1, max_size=max_size,
    )


def assert_valid(market, check_solvency=False):
    report = market.verify_invariants(check_solvency=check_solvency)
    assert report["valid"], report["violations"]
    assert report["total_borrow"] == report["sum_debt"]


class TestInvariantProperties:
    """Property-based invariant tests."""

    @given(operations(MARKET_OPERATIONS))
    @settings(max_examples=40, deadline=None)
    def test_invariants_hold_after_every_step(self, ops):
        """
        PROPERTY: Any interleaving of borrower, lender, liquidator, price and
        time steps keeps the ledger consistent.
        """
        market = create_market()
        open_positions(market)
        assert_valid(market)

        for kind, user, n in ops:
            try:
                apply_operation(market, kind, user, n)
            except LendingError:
                pass
            assert_valid(market)

    @given(operations(STATIC_OPERATIONS))
    @settings(max_examples=40, deadline=None)
    def test_solvency_without_market_moves(self, ops):
        """
        PROPERTY: With fixed prices and time, every accepted operation leaves
        every position within its credit limit.
        """
        market = create_market()
        open_positions(market)

        for kind, user, n in ops:
            try:
                apply_operation(market, kind, user, n)
            except LendingError:
                pass
            assert_valid(market, check_solvency=True)

    @given(operations(MARKET_OPERATIONS))
    @settings(max_examples=25, deadline=None)
    def test_terminal_positions_hold_nothing(self, ops):
        """
        PROPERTY: CLOSED and LIQUIDATED positions carry no debt and no collateral.
        """
        market = create_market()
        open_positions(market)
        for kind, user, n in ops:
            try:
                apply_operation(market, kind, user, n)
            except LendingError:
                pass

        for position in market.positions.all_positions():
            if position.status != PositionStatus.ACTIVE:
                assert position.debt == 0
                assert sum(position.collateral.values()) == 0


class TestInvariantExamples:
    """Explicit invariant examples."""

    def test_fresh_market(self, market):
        assert_valid(market, check_solvency=True)

    @pytest.mark.parametrize("kind", MARKET_OPERATIONS)
    def test_each_operation_alone(self, market, kind):
        open_positions(market)
        apply_operation(market, "supply_weth", "alice", 100)
        try:
            apply_operation(market, kind, "alice", 10)
        except LendingError:
            pass
        assert_valid(market)
