"""
risk.py - Risk Engine: Valuation, Health and Interest Rates

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs / results):
   - MarketState: protocol-wide balances the rate model reads
   - PositionSummary: every risk metric of one position

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly (collateral, prices, assets, config)
   - No registry, no oracle, no clock
   - Trivially testable, stress-testable

3. ADAPTER (RiskEngine):
   - Reads assets from the registry and prices from the oracle engine once
   - Feeds them into the calculate_* functions

Key Formulas (amounts in smallest units, prices with PRICE_DECIMALS):
    value(asset)        = amount * price * 10^base_dec / (10^asset_dec * 10^PRICE_DECIMALS)
    credit_limit        = sum(value * borrow_threshold / WAD)
    liquidation_value   = sum(value * liquidation_threshold / WAD)
    health_factor       = liquidation_value * WAD / debt    (MAX_HEALTH_FACTOR if no debt)
    utilization         = total_borrow * WAD / total_supplied
    supply_rate         = (total_assets - protocol_fee) * WAD / total_supplied - WAD
    borrow_rate         = max(supply_rate * WAD / utilization, base_rate)
                          + profit_target + jump_rate(tier) * utilization / WAD
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Mapping, Optional

from .assets import Asset, AssetRegistry
from .config import ProtocolConfig, TierParameters
from .core import (
    WAD, PRICE_DECIMALS, MAX_HEALTH_FACTOR, AssetTier, to_seconds,
)
from .fixed_point import compound
from .oracle import OracleEngine
from .positions import Position


# Type aliases
CollateralPool = Mapping[str, int]   # asset_symbol -> amount
PriceDict = Mapping[str, int]        # asset_symbol -> PRICE_DECIMALS price
AssetTable = Mapping[str, Asset]     # asset_symbol -> Asset


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class MarketState:
    """
    Protocol-wide balances used by the interest-rate model.

    Attributes:
        total_borrow: Outstanding debt across all positions (base units)
        total_supplied: Liquidity supplied by lenders (base units)
        protocol_balance: Base token currently held by the protocol
    """
    total_borrow: int
    total_supplied: int
    protocol_balance: int

    @property
    def total_assets(self) -> int:
        return self.protocol_balance + self.total_borrow


@dataclass(frozen=True, slots=True)
class PositionSummary:
    """Risk metrics of one position at one point in time."""
    owner: str
    position_id: int
    status: str
    isolated: bool
    tier: AssetTier
    collateral_value: int
    credit_limit: int
    liquidation_value: int
    debt: int
    debt_with_interest: int
    health_factor: int
    liquidatable: bool
    borrow_rate: int


# ============================================================================
# PURE CALCULATION FUNCTIONS - VALUATION
# ============================================================================

def calculate_asset_value(
    amount: int,
    price: int,
    asset_decimals: int,
    base_decimals: int,
    weight: int = WAD,
) -> int:
    """
    Base-token value of `amount` of an asset, scaled by a WAD weight.

    A single floor division at the end keeps the result exact for any
    combination of decimals.
    """
    numerator = amount * price * weight * 10 ** base_decimals
    return numerator // (10 ** asset_decimals * 10 ** PRICE_DECIMALS * WAD)


def _weighted_value(
    collateral: CollateralPool,
    prices: PriceDict,
    assets: AssetTable,
    base_decimals: int,
    weight_field: Optional[str],
) -> int:
    total = 0
    for symbol, amount in collateral.items():
        if amount == 0:
            continue
        if symbol not in prices:
            raise ValueError(f"Missing price for collateral asset '{symbol}'")
        asset = assets[symbol]
        weight = WAD if weight_field is None else getattr(asset, weight_field)
        total += calculate_asset_value(amount, prices[symbol], asset.decimals, base_decimals, weight)
    return total


def calculate_collateral_value(
    collateral: CollateralPool,
    prices: PriceDict,
    assets: AssetTable,
    base_decimals: int,
) -> int:
    """
    Unweighted base-token value of all collateral.

    Raises:
        ValueError: if a non-zero collateral asset has no price
    """
    return _weighted_value(collateral, prices, assets, base_decimals, None)


def calculate_credit_limit(
    collateral: CollateralPool,
    prices: PriceDict,
    assets: AssetTable,
    base_decimals: int,
) -> int:
    """Maximum debt the collateral supports (borrow-threshold weighted)."""
    return _weighted_value(collateral, prices, assets, base_decimals, "borrow_threshold")


def calculate_liquidation_value(
    collateral: CollateralPool,
    prices: PriceDict,
    assets: AssetTable,
    base_decimals: int,
) -> int:
    """Collateral value weighted by liquidation thresholds."""
    return _weighted_value(collateral, prices, assets, base_decimals, "liquidation_threshold")


def calculate_health_factor(liquidation_value: int, debt: int) -> int:
    """
    WAD health factor; below WAD means liquidatable.

    Example:
        calculate_health_factor(1_100, 1_000) -> 1.1 WAD
        calculate_health_factor(0, 0) -> MAX_HEALTH_FACTOR
    """
    if debt == 0:
        return MAX_HEALTH_FACTOR
    return liquidation_value * WAD // debt


def calculate_position_tier(collateral: CollateralPool, assets: AssetTable) -> AssetTier:
    """
    Riskiest tier among the assets held; STABLE for an empty position.
    """
    tiers = [assets[symbol].tier for symbol, amount in collateral.items() if amount > 0]
    return max(tiers, default=AssetTier.STABLE)


# ============================================================================
# PURE CALCULATION FUNCTIONS - RATES
# ============================================================================

def calculate_utilization(total_borrow: int, total_supplied: int) -> int:
    """Share of supplied liquidity currently lent out, as a WAD fraction."""
    if total_supplied == 0 or total_borrow == 0:
        return 0
    return total_borrow * WAD // total_supplied


def calculate_supply_rate(market: MarketState, profit_target_rate: int) -> int:
    """
    Return on supplied liquidity as a WAD fraction.

    The protocol keeps its profit target as a fee, but only once the pool has
    grown past supplied + target; the remainder is the suppliers' yield.
    """
    supplied = market.total_supplied
    if supplied == 0:
        return 0
    total = market.total_assets
    target = supplied * profit_target_rate // WAD
    fee = target if total > supplied + target else 0
    ratio = (total - fee) * WAD // supplied
    return max(0, ratio - WAD)


def calculate_borrow_rate(
    tier: AssetTier,
    market: MarketState,
    config: ProtocolConfig,
    tiers: TierParameters,
) -> int:
    """
    Annual WAD borrow rate for a position of the given tier.

    The break-even rate (what suppliers earn, spread over the borrowed share)
    is floored at the base borrow rate; on top come the profit target and the
    tier's jump premium scaled by utilization.
    """
    utilization = calculate_utilization(market.total_borrow, market.total_supplied)
    if utilization == 0:
        break_even = config.base_borrow_rate
    else:
        supply_rate = calculate_supply_rate(market, config.profit_target_rate)
        break_even = max(supply_rate * WAD // utilization, config.base_borrow_rate)
    return break_even + config.profit_target_rate + tiers.jump_rate(tier) * utilization // WAD


def calculate_debt_with_interest(
    debt: int,
    rate: int,
    last_accrual: Optional[datetime],
    now: datetime,
) -> int:
    """Debt compounded per second at `rate` since last_accrual."""
    return compound(debt, rate, to_seconds(last_accrual, now))


# ============================================================================
# ADAPTER
# ============================================================================

class RiskEngine:
    """
    Reads positions against the registry and oracle engine.

    Every method that values collateral reads fresh oracle prices, so oracle
    faults propagate to the caller.
    """

    def __init__(self, registry: AssetRegistry, oracle: OracleEngine, base_decimals: int):
        self.registry = registry
        self.oracle = oracle
        self.base_decimals = base_decimals

    def prices_for(self, collateral: CollateralPool, now: datetime) -> Dict[str, int]:
        return {
            symbol: self.oracle.get_asset_price(symbol, now)
            for symbol, amount in collateral.items() if amount > 0
        }

    def _assets_for(self, collateral: CollateralPool) -> Dict[str, Asset]:
        return {symbol: self.registry.get(symbol) for symbol in collateral}

    def collateral_value(self, collateral: CollateralPool, now: datetime) -> int:
        return calculate_collateral_value(
            collateral, self.prices_for(collateral, now), self._assets_for(collateral), self.base_decimals,
        )

    def credit_limit(self, collateral: CollateralPool, now: datetime) -> int:
        return calculate_credit_limit(
            collateral, self.prices_for(collateral, now), self._assets_for(collateral), self.base_decimals,
        )

    def liquidation_value(self, collateral: CollateralPool, now: datetime) -> int:
        return calculate_liquidation_value(
            collateral, self.prices_for(collateral, now), self._assets_for(collateral), self.base_decimals,
        )

    def position_tier(self, position: Position) -> AssetTier:
        if position.isolated and position.isolated_asset is not None:
            return self.registry.get(position.isolated_asset).tier
        return calculate_position_tier(position.collateral, self._assets_for(position.collateral))

    def borrow_rate(
        self,
        position: Position,
        market: MarketState,
        config: ProtocolConfig,
        tiers: TierParameters,
    ) -> int:
        return calculate_borrow_rate(self.position_tier(position), market, config, tiers)

    def debt_with_interest(
        self,
        position: Position,
        market: MarketState,
        config: ProtocolConfig,
        tiers: TierParameters,
        now: datetime,
    ) -> int:
        if position.debt == 0:
            return 0
        rate = self.borrow_rate(position, market, config, tiers)
        return calculate_debt_with_interest(position.debt, rate, position.last_accrual, now)

    def health_factor(self, position: Position, debt: int, now: datetime) -> int:
        if debt == 0:
            return MAX_HEALTH_FACTOR
        return calculate_health_factor(self.liquidation_value(position.collateral, now), debt)

    def summarize(
        self,
        position: Position,
        market: MarketState,
        config: ProtocolConfig,
        tiers: TierParameters,
        now: datetime,
    ) -> PositionSummary:
        """All risk metrics of a position from one set of price reads."""
        collateral = position.collateral
        prices = self.prices_for(collateral, now)
        assets = self._assets_for(collateral)
        liquidation_value = calculate_liquidation_value(collateral, prices, assets, self.base_decimals)
        tier = self.position_tier(position)
        rate = calculate_borrow_rate(tier, market, config, tiers)
        owed = calculate_debt_with_interest(position.debt, rate, position.last_accrual, now)
        health = calculate_health_factor(liquidation_value, owed)
        return PositionSummary(
            owner=position.owner,
            position_id=position.position_id,
            status=position.status.value,
            isolated=position.isolated,
            tier=tier,
            collateral_value=calculate_collateral_value(collateral, prices, assets, self.base_decimals),
            credit_limit=calculate_credit_limit(collateral, prices, assets, self.base_decimals),
            liquidation_value=liquidation_value,
            debt=position.debt,
            debt_with_interest=owed,
            health_factor=health,
            liquidatable=health < WAD,
            borrow_rate=rate,
        )
