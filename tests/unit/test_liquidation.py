"""
test_liquidation.py - Unit tests for liquidation

Standard setup: alice supplies 10 WETH (85% liquidation threshold) and
borrows 20,000 USDC. The health factor crosses one between 2,353 and 2,352
USD per WETH:

    10 * 2,353 * 0.85 = 20,000.5  -> healthy
    10 * 2,352 * 0.85 = 19,992.0  -> liquidatable

Tests:
- Threshold crossing
- Liquidator eligibility (governance token balance)
- Settlement: debt plus tier fee in, all collateral out
- Tier-specific fees (CROSS_A, CROSS_B, ISOLATED)
- Liquidation through interest accrual
- Terminal status and state restoration on failure
"""

import pytest
from datetime import timedelta

from lendledger import (
    WAD, AssetTier, FaultKind, PositionStatus,
    InsufficientGovernanceTokens, NotLiquidatable, PositionNotActive,
    ProtocolHalted, TransferFailed,
)

from tests.market import (
    LENDER_LIQUIDITY, LIQUIDATOR, MANAGER, PAUSER, T0,
    fund, ledger_fingerprint, price, refresh_prices, set_price, units, usdc,
)


def underwater_position(market, weth_price=2_352):
    pid = market.create_position("alice", "WETH")
    market.supply_collateral("alice", "WETH", units(10), pid)
    market.borrow("alice", pid, usdc(20_000))
    set_price(market, "WETH", price(weth_price))
    return pid


# ============================================================================
# THRESHOLD
# ============================================================================

class TestThreshold:

    def test_healthy_above_threshold(self, market):
        pid = underwater_position(market, weth_price=2_353)
        assert market.health_factor("alice", pid) >= WAD
        assert not market.is_liquidatable("alice", pid)
        with pytest.raises(NotLiquidatable) as exc_info:
            market.liquidate(LIQUIDATOR, "alice", pid)
        assert exc_info.value.details["health_factor"] >= WAD

    def test_liquidatable_below_threshold(self, market):
        pid = underwater_position(market)
        assert market.health_factor("alice", pid) < WAD
        assert market.is_liquidatable("alice", pid)

    def test_position_without_debt(self, market):
        pid = market.create_position("alice", "WETH")
        market.supply_collateral("alice", "WETH", units(1), pid)
        set_price(market, "WETH", price(1_500))
        assert not market.is_liquidatable("alice", pid)
        with pytest.raises(NotLiquidatable):
            market.liquidate(LIQUIDATOR, "alice", pid)


# ============================================================================
# ELIGIBILITY
# ============================================================================

class TestEligibility:

    def test_liquidator_without_governance_tokens(self, market):
        pid = underwater_position(market)
        with pytest.raises(InsufficientGovernanceTokens) as exc_info:
            market.liquidate("bob", "alice", pid)
        assert exc_info.value.kind == FaultKind.AUTHORIZATION
        assert exc_info.value.details["required"] == 20_000 * WAD

    def test_unregistered_liquidator(self, market):
        pid = underwater_position(market)
        with pytest.raises(InsufficientGovernanceTokens):
            market.liquidate("stranger", "alice", pid)

    def test_threshold_follows_config(self, market):
        pid = underwater_position(market)
        fund(market, "bob", "GOV", 15 * WAD)
        market.update_protocol_config(MANAGER, liquidator_threshold=10 * WAD)
        fund(market, "bob", "USDC", usdc(1_000))
        market.liquidate("bob", "alice", pid)
        assert market.get_position("alice", pid).status == PositionStatus.LIQUIDATED


# ============================================================================
# SETTLEMENT
# ============================================================================

class TestSettlement:

    def test_liquidation_settles(self, market):
        pid = underwater_position(market)
        liquidator_usdc = market.tokens.get_balance(LIQUIDATOR, "USDC")

        received = market.liquidate(LIQUIDATOR, "alice", pid)

        assert received == {"WETH": units(10)}
        assert market.tokens.get_balance(LIQUIDATOR, "WETH") == units(10)
        assert market.tokens.get_balance(LIQUIDATOR, "USDC") == liquidator_usdc - usdc(20_400)
        assert market.tokens.get_balance(market.address, "USDC") == LENDER_LIQUIDITY + usdc(400)

        position = market.get_position("alice", pid)
        assert position.status == PositionStatus.LIQUIDATED
        assert position.debt == 0
        assert position.collateral == {}
        assert market.totals.total_borrow == 0
        assert market.registry.get_tvl("WETH") == 0

    def test_event_payload(self, market):
        pid = underwater_position(market)
        market.liquidate(LIQUIDATOR, "alice", pid)
        event = market.event_log[-1]
        assert event.name == "Liquidated"
        assert event.caller == LIQUIDATOR
        assert event.payload["debt"] == usdc(20_000)
        assert event.payload["fee"] == usdc(400)
        assert event.payload["tier"] == "CROSS_A"

    def test_borrower_keeps_borrowed_funds(self, market):
        pid = underwater_position(market)
        market.liquidate(LIQUIDATOR, "alice", pid)
        assert market.tokens.get_balance("alice", "USDC") == usdc(120_000)

    def test_liquidator_cannot_pay(self, market):
        pid = underwater_position(market)
        fund(market, "poor", "GOV", 20_000 * WAD)
        fund(market, "poor", "USDC", usdc(1_000))
        before = ledger_fingerprint(market)

        with pytest.raises(TransferFailed):
            market.liquidate("poor", "alice", pid)
        assert ledger_fingerprint(market) == before

    def test_terminal(self, market):
        pid = underwater_position(market)
        market.liquidate(LIQUIDATOR, "alice", pid)
        assert not market.is_liquidatable("alice", pid)
        with pytest.raises(PositionNotActive):
            market.liquidate(LIQUIDATOR, "alice", pid)
        with pytest.raises(PositionNotActive):
            market.repay("alice", pid, usdc(1))

    def test_paused(self, market):
        pid = underwater_position(market)
        market.pause(PAUSER)
        with pytest.raises(ProtocolHalted):
            market.liquidate(LIQUIDATOR, "alice", pid)


class TestTierFees:

    def test_isolated_fee(self, market):
        """200 RWA at 100 backs 10,000; at 83 the liquidation value is 9,960."""
        pid = market.create_position("alice", "RWA", isolated=True)
        market.supply_collateral("alice", "RWA", units(200), pid)
        market.borrow("alice", pid, usdc(10_000))
        set_price(market, "RWA", price(83))

        market.liquidate(LIQUIDATOR, "alice", pid)
        fee = market.event_log[-1].payload["fee"]
        assert fee == usdc(400)
        assert market.event_log[-1].payload["tier"] == "ISOLATED"

    def test_mixed_collateral_uses_riskiest_tier(self, market):
        """DAI + WBTC is a CROSS_B position; WBTC falling to 40,000 sinks it."""
        pid = market.create_position("alice", "DAI")
        market.supply_collateral("alice", "DAI", units(10_000), pid)
        market.supply_collateral("alice", "WBTC", units(1, 7), pid)
        market.borrow("alice", pid, usdc(13_000))
        assert market.position_tier("alice", pid) == AssetTier.CROSS_B

        set_price(market, "WBTC", price(40_000))
        received = market.liquidate(LIQUIDATOR, "alice", pid)

        assert received == {"DAI": units(10_000), "WBTC": units(1, 7)}
        assert market.event_log[-1].payload["fee"] == usdc(390)


# ============================================================================
# INTEREST-DRIVEN LIQUIDATION
# ============================================================================

class TestInterestDriven:

    def test_interest_pushes_position_under(self, market):
        """Healthy by 0.5 USDC at 2,353; a month of interest sinks it."""
        pid = underwater_position(market, weth_price=2_353)
        assert not market.is_liquidatable("alice", pid)

        market.advance_time(T0 + timedelta(days=30))
        refresh_prices(market)
        assert market.is_liquidatable("alice", pid)

        owed = market.debt_with_interest("alice", pid)
        market.liquidate(LIQUIDATOR, "alice", pid)

        event = market.event_log[-1]
        assert event.payload["debt"] == owed
        assert market.totals.total_borrow == 0
        assert market.totals.total_accrued_borrower_interest == owed - usdc(20_000)
        assert market.verify_invariants()["valid"]
