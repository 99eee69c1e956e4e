"""
test_price_path_stress.py - Collateral price paths against a live book

Drives the WETH price along simulated daily paths while interest accrues,
liquidating whatever falls below a health factor of one.

Tests verify:
- Ledger invariants hold after every simulated day
- Surviving positions are healthy; liquidated ones hold nothing
- Positions are liquidated in order of their liquidation prices on a steady decline
- The liquidator receives exactly the collateral of the liquidated positions
"""

import numpy as np
import pytest
from datetime import timedelta

from lendledger import WAD, PositionStatus

from tests.market import LIQUIDATOR, create_market, refresh_prices, set_price, units, usdc


# (owner, WETH collateral, USDC borrowed); liquidation prices ~2,235 / ~2,059 / ~1,765
BOOK = (
    ("alice", 10, 19_000),
    ("bob", 20, 35_000),
    ("carol", 30, 45_000),
)


def open_book(market):
    for owner, weth, debt in BOOK:
        pid = market.create_position(owner, "WETH")
        market.supply_collateral(owner, "WETH", units(weth), pid)
        market.borrow(owner, pid, usdc(debt))


def gbm_path(start, days, mu, sigma, seed=42):
    """Daily geometric Brownian motion; daily moves clipped to +/-20%."""
    rng = np.random.default_rng(seed)
    dt = 1 / 365
    shocks = (mu - 0.5 * sigma ** 2) * dt + sigma * np.sqrt(dt) * rng.standard_normal(days)
    returns = np.clip(np.exp(shocks) - 1, -0.2, 0.2)
    return start * np.cumprod(1 + returns)


def run_path(market, path):
    """Step one day per price; liquidate anything underwater. Returns {owner: day}."""
    liquidated = {}
    for day, usd in enumerate(path, start=1):
        market.advance_time(market.current_time + timedelta(days=1))
        refresh_prices(market)
        set_price(market, "WETH", int(round(float(usd) * 10 ** 8)))

        for owner, _, _ in BOOK:
            if market.is_liquidatable(owner, 0):
                market.liquidate(LIQUIDATOR, owner, 0)
                liquidated[owner] = day

        report = market.verify_invariants()
        assert report["valid"], (day, report["violations"])
    return liquidated


def assert_book_consistent(market, liquidated):
    for owner, weth, _ in BOOK:
        position = market.get_position(owner, 0)
        if owner in liquidated:
            assert position.status == PositionStatus.LIQUIDATED
            assert position.debt == 0
            assert position.collateral == {}
        else:
            assert position.status == PositionStatus.ACTIVE
            assert market.health_factor(owner, 0) >= WAD

    seized = sum(weth for owner, weth, _ in BOOK if owner in liquidated)
    assert market.tokens.get_balance(LIQUIDATOR, "WETH") == units(seized)
    assert market.registry.get_tvl("WETH") == units(60 - seized)


@pytest.mark.parametrize("seed, mu, sigma", [
    (42, 0.0, 0.8),
    (7, -1.5, 0.8),
    (2024, 0.5, 1.2),
])
def test_random_paths_keep_ledger_consistent(seed, mu, sigma):
    market = create_market()
    open_book(market)

    liquidated = run_path(market, gbm_path(2_500.0, days=120, mu=mu, sigma=sigma, seed=seed))

    assert_book_consistent(market, liquidated)


def test_steady_decline_liquidates_in_order():
    market = create_market()
    open_book(market)

    path = np.linspace(2_450.0, 1_700.0, 30)
    liquidated = run_path(market, path)

    assert set(liquidated) == {"alice", "bob", "carol"}
    assert liquidated["alice"] < liquidated["bob"] < liquidated["carol"]
    assert_book_consistent(market, liquidated)
    assert market.totals.total_borrow == 0


def test_rally_liquidates_nothing():
    market = create_market()
    open_book(market)

    liquidated = run_path(market, np.linspace(2_550.0, 4_000.0, 60))

    assert liquidated == {}
    assert_book_consistent(market, liquidated)
    assert market.debt_with_interest("alice", 0) > usdc(19_000)
