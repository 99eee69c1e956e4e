"""
test_lending_lifecycle.py - End-to-end lending scenario

One lender funds the pool; three borrowers use cross, stable and isolated
collateral; a collateral crash triggers a liquidation; a flash loan passes
through; everyone exits and the lender withdraws.

Tests verify:
- Every borrower gets their collateral back or loses it to the liquidator
- The lender's yield equals borrower interest plus liquidation and flash-loan fees
- The protocol ends with no cash, no debt, no TVL and no LP shares outstanding
- Ledger invariants hold at every stage
"""

from datetime import timedelta

from lendledger import REPAY_ALL, WAD, PositionStatus

from tests.market import (
    LENDER, LENDER_LIQUIDITY, LIQUIDATOR, T0,
    create_market, fund, price, refresh_prices, set_price, units, usdc,
)


class ArbitrageBot:

    def __init__(self, protocol, address="arb_bot"):
        self.protocol = protocol
        self.address = address
        fund(protocol, address, "USDC", usdc(1_000))

    def execute_operation(self, token, amount, fee, initiator, params):
        self.protocol.tokens.transfer(self.address, self.protocol.address, token, amount + fee)
        return True


def assert_valid(market):
    report = market.verify_invariants()
    assert report["valid"], report["violations"]


def test_full_lifecycle():
    market = create_market()

    # ------------------------------------------------------------------
    # day 0: borrowers open positions
    # ------------------------------------------------------------------
    alice = market.create_position("alice", "WETH")
    market.supply_collateral("alice", "WETH", units(10), alice)
    market.borrow("alice", alice, usdc(15_000))

    bob = market.create_position("bob", "DAI")
    market.supply_collateral("bob", "DAI", units(50_000), bob)
    market.borrow("bob", bob, usdc(40_000))

    carol = market.create_position("carol", "RWA", isolated=True)
    market.supply_collateral("carol", "RWA", units(200), carol)
    market.borrow("carol", carol, usdc(9_000))

    assert market.totals.total_borrow == usdc(64_000)
    assert market.utilization() == 64 * WAD // 1_000
    assert_valid(market)

    # ------------------------------------------------------------------
    # day 90: RWA crash, liquidation, flash loan, repayments
    # ------------------------------------------------------------------
    market.advance_time(T0 + timedelta(days=90))
    refresh_prices(market)
    set_price(market, "RWA", price(70))

    assert market.is_liquidatable("carol", carol)
    assert not market.is_liquidatable("alice", alice)
    assert not market.is_liquidatable("bob", bob)

    received = market.liquidate(LIQUIDATOR, "carol", carol)
    liquidation = market.event_log[-1]
    assert received == {"RWA": units(200)}
    assert liquidation.payload["tier"] == "ISOLATED"
    assert liquidation.payload["debt"] > usdc(9_000)
    assert_valid(market)

    flash_fee = market.flash_loan("alice", ArbitrageBot(market), usdc(200_000))
    assert flash_fee == usdc(180)

    paid = market.repay("alice", alice, REPAY_ALL)
    assert paid > usdc(15_000)
    assert market.get_position("alice", alice).debt == 0

    market.repay("bob", bob, usdc(10_000))
    assert market.get_position("bob", bob).debt > usdc(30_000)
    assert_valid(market)

    # ------------------------------------------------------------------
    # day 180: reward, exits, lender withdrawal
    # ------------------------------------------------------------------
    market.advance_time(T0 + timedelta(days=180))
    refresh_prices(market)

    assert market.claim_reward(LENDER) == 2_000 * WAD

    assert market.exit_position("bob", bob) == {"DAI": units(50_000)}
    assert market.exit_position("alice", alice) == {"WETH": units(10)}
    assert market.totals.total_borrow == 0

    shares = market.tokens.get_balance(LENDER, market.lp_token)
    value = market.withdraw_liquidity(LENDER, shares)

    totals = market.totals
    assert value - LENDER_LIQUIDITY == (
        totals.total_accrued_borrower_interest + liquidation.payload["fee"] + totals.total_flash_loan_fees
    )
    assert totals.total_accrued_supplier_interest == value - LENDER_LIQUIDITY
    assert totals.total_supplied_liquidity == 0

    # ------------------------------------------------------------------
    # final state
    # ------------------------------------------------------------------
    assert market.tokens.get_balance(market.address, "USDC") == 0
    assert market.tokens.outstanding(market.lp_token) == 0
    for symbol in ("DAI", "WETH", "WBTC", "RWA"):
        assert market.registry.get_tvl(symbol) == 0

    assert market.tokens.get_balance("alice", "WETH") == units(1_000)
    assert market.tokens.get_balance("bob", "DAI") == units(1_000_000)
    assert market.tokens.get_balance("carol", "RWA") == units(100_000 - 200)
    assert market.tokens.get_balance(LIQUIDATOR, "RWA") == units(200)
    assert market.tokens.get_balance(LENDER, "GOV") == 2_000 * WAD

    statuses = {owner: market.get_position(owner, 0).status for owner in ("alice", "bob", "carol")}
    assert statuses == {
        "alice": PositionStatus.CLOSED,
        "bob": PositionStatus.CLOSED,
        "carol": PositionStatus.LIQUIDATED,
    }
    assert_valid(market)


def test_lifecycle_event_trail():
    market = create_market()
    start = len(market.event_log)

    pid = market.create_position("alice", "WETH")
    market.supply_collateral("alice", "WETH", units(10), pid)
    market.borrow("alice", pid, usdc(10_000))
    market.advance_time(T0 + timedelta(days=30))
    refresh_prices(market)
    market.exit_position("alice", pid)

    names = [event.name for event in market.event_log[start:]]
    assert names == [
        "PositionCreated", "SupplyCollateral", "Borrow",
        "InterestAccrued", "Repay", "PositionClosed",
    ]
    assert all(event.caller == "alice" for event in market.event_log[start:])
