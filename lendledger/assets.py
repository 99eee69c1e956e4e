"""
assets.py - Asset Registry

Holds the listed collateral assets, their risk parameters and oracle sources,
and the per-asset TVL (total amount supplied across all positions).

Asset and OracleSource records are frozen; every update replaces the record
with a validated copy. Assets are never removed, only deactivated.
Authorization is enforced by the controller before any method here is called.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from .core import (
    WAD, AssetTier, OracleType,
    AssetAlreadyListed, AssetInactive, AssetNotListed,
    InvalidConfiguration, OracleConfigurationError,
)
from .price_feeds import PriceFeed


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class OracleSource:
    """
    One price source of an asset.

    Attributes:
        source_id: Identifier unique within the asset (e.g. feed address)
        feed: The reporter queried for prices
        decimals: Precision of the feed's answers
        oracle_type: PUSH_FEED or AMM_TWAP
        active: Inactive sources are ignored by aggregation
    """
    source_id: str
    feed: PriceFeed
    decimals: int
    oracle_type: OracleType = OracleType.PUSH_FEED
    active: bool = True

    def __post_init__(self):
        if not self.source_id or not self.source_id.strip():
            raise OracleConfigurationError("source_id cannot be empty")
        if not 0 <= self.decimals <= 36:
            raise OracleConfigurationError(
                f"decimals out of range: {self.decimals}",
                source_id=self.source_id, decimals=self.decimals,
            )


@dataclass(frozen=True, slots=True)
class Asset:
    """
    A listed collateral asset and its risk parameters.

    Attributes:
        symbol: Token symbol, also the token-ledger unit
        decimals: Token precision
        tier: Risk tier
        borrow_threshold: WAD fraction of value that counts towards credit
        liquidation_threshold: WAD fraction of value that counts towards health
        max_supply_threshold: Cap on the asset's TVL, in asset units
        isolation_debt_cap: Debt cap for isolated positions (ISOLATED tier only)
        minimum_oracle_count: Quorum override (0 = use the global default)
        active: Inactive assets cannot be supplied or used to open positions
        oracles: Price sources, in registration order
        primary_oracle: source_id of the fallback source
    """
    symbol: str
    decimals: int
    tier: AssetTier
    borrow_threshold: int
    liquidation_threshold: int
    max_supply_threshold: int
    isolation_debt_cap: int = 0
    minimum_oracle_count: int = 0
    active: bool = True
    oracles: Tuple[OracleSource, ...] = field(default_factory=tuple)
    primary_oracle: Optional[str] = None

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise InvalidConfiguration("asset symbol cannot be empty")
        if not 0 <= self.decimals <= 36:
            raise InvalidConfiguration(f"{self.symbol}: decimals out of range", field="decimals",
                                       value=self.decimals)
        if not 0 < self.borrow_threshold <= self.liquidation_threshold < WAD:
            raise InvalidConfiguration(
                f"{self.symbol}: thresholds must satisfy 0 < borrow <= liquidation < 1",
                borrow_threshold=self.borrow_threshold,
                liquidation_threshold=self.liquidation_threshold,
            )
        if self.max_supply_threshold <= 0:
            raise InvalidConfiguration(f"{self.symbol}: max_supply_threshold must be positive",
                                       field="max_supply_threshold", value=self.max_supply_threshold)
        if self.isolation_debt_cap < 0:
            raise InvalidConfiguration(f"{self.symbol}: isolation_debt_cap cannot be negative",
                                       field="isolation_debt_cap", value=self.isolation_debt_cap)
        if self.tier == AssetTier.ISOLATED and self.isolation_debt_cap == 0:
            raise InvalidConfiguration(f"{self.symbol}: ISOLATED assets need an isolation_debt_cap",
                                       field="isolation_debt_cap", value=0)
        if self.tier != AssetTier.ISOLATED and self.isolation_debt_cap != 0:
            raise InvalidConfiguration(f"{self.symbol}: isolation_debt_cap only applies to ISOLATED assets",
                                       field="isolation_debt_cap", value=self.isolation_debt_cap)
        if self.minimum_oracle_count < 0:
            raise InvalidConfiguration(f"{self.symbol}: minimum_oracle_count cannot be negative",
                                       field="minimum_oracle_count", value=self.minimum_oracle_count)
        active_types = [o.oracle_type for o in self.oracles if o.active]
        if len(active_types) != len(set(active_types)):
            raise OracleConfigurationError(f"{self.symbol}: more than one active source per type")
        ids = [o.source_id for o in self.oracles]
        if len(ids) != len(set(ids)):
            raise OracleConfigurationError(f"{self.symbol}: duplicate oracle source ids")
        if self.primary_oracle is not None and self.primary_oracle not in ids:
            raise OracleConfigurationError(
                f"{self.symbol}: primary oracle {self.primary_oracle} is not registered",
                primary_oracle=self.primary_oracle,
            )

    def active_oracles(self) -> List[OracleSource]:
        return [o for o in self.oracles if o.active]

    def oracle(self, source_id: str) -> OracleSource:
        for source in self.oracles:
            if source.source_id == source_id:
                return source
        raise OracleConfigurationError(
            f"{self.symbol}: unknown oracle source {source_id}",
            asset=self.symbol, source_id=source_id,
        )


# Fields of Asset that update_asset() may change.
_MUTABLE_ASSET_FIELDS = frozenset({
    "decimals", "tier", "borrow_threshold", "liquidation_threshold",
    "max_supply_threshold", "isolation_debt_cap", "minimum_oracle_count",
})


# ============================================================================
# REGISTRY
# ============================================================================

class AssetRegistry:
    """
    Listed assets plus their aggregate TVL.

    Example:
        registry = AssetRegistry()
        registry.add_asset(Asset("WETH", 18, AssetTier.CROSS_A, ...))
        registry.require_active("WETH")
    """

    def __init__(self):
        self.assets: Dict[str, Asset] = {}
        self.tvl: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get(self, symbol: str) -> Asset:
        """
        Raises:
            AssetNotListed: If symbol is unknown
        """
        asset = self.assets.get(symbol)
        if asset is None:
            raise AssetNotListed(f"asset {symbol} is not listed", asset=symbol)
        return asset

    def require_active(self, symbol: str) -> Asset:
        """
        Raises:
            AssetNotListed: If symbol is unknown
            AssetInactive: If the asset has been deactivated
        """
        asset = self.get(symbol)
        if not asset.active:
            raise AssetInactive(f"asset {symbol} is not active", asset=symbol)
        return asset

    def is_listed(self, symbol: str) -> bool:
        return symbol in self.assets

    def list_assets(self) -> List[str]:
        """Listed symbols in registration order."""
        return list(self.assets)

    def get_tvl(self, symbol: str) -> int:
        return self.tvl.get(symbol, 0)

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------

    def add_asset(self, asset: Asset) -> None:
        if asset.symbol in self.assets:
            raise AssetAlreadyListed(f"asset {asset.symbol} already listed", asset=asset.symbol)
        self.assets[asset.symbol] = asset
        self.tvl[asset.symbol] = 0

    def update_asset(self, symbol: str, **changes: Any) -> Asset:
        unknown = sorted(set(changes) - _MUTABLE_ASSET_FIELDS)
        if unknown:
            raise InvalidConfiguration(f"cannot update asset fields {unknown}", unknown=unknown)
        updated = replace(self.get(symbol), **changes)
        self.assets[symbol] = updated
        return updated

    def set_active(self, symbol: str, active: bool) -> Asset:
        updated = replace(self.get(symbol), active=active)
        self.assets[symbol] = updated
        return updated

    def add_oracle_source(self, symbol: str, source: OracleSource, primary: bool = False) -> Asset:
        """
        Register a source for an asset.

        The first source registered becomes primary unless one is already set.

        Raises:
            OracleConfigurationError: If another active source of the same type exists
        """
        asset = self.get(symbol)
        if source.active and any(
            o.active and o.oracle_type == source.oracle_type for o in asset.oracles
        ):
            raise OracleConfigurationError(
                f"{symbol} already has an active {source.oracle_type.value} source",
                asset=symbol, oracle_type=source.oracle_type.value,
            )
        primary_id = source.source_id if primary or asset.primary_oracle is None else asset.primary_oracle
        updated = replace(asset, oracles=asset.oracles + (source,), primary_oracle=primary_id)
        self.assets[symbol] = updated
        return updated

    def set_oracle_source_active(self, symbol: str, source_id: str, active: bool) -> Asset:
        asset = self.get(symbol)
        target = asset.oracle(source_id)
        oracles = tuple(
            replace(o, active=active) if o.source_id == target.source_id else o
            for o in asset.oracles
        )
        updated = replace(asset, oracles=oracles)
        self.assets[symbol] = updated
        return updated

    def set_primary_oracle(self, symbol: str, source_id: str) -> Asset:
        asset = self.get(symbol)
        asset.oracle(source_id)
        updated = replace(asset, primary_oracle=source_id)
        self.assets[symbol] = updated
        return updated

    def adjust_tvl(self, symbol: str, delta: int) -> int:
        new_tvl = self.tvl.get(symbol, 0) + delta
        if new_tvl < 0:
            raise ValueError(f"TVL of {symbol} cannot go negative ({new_tvl})")
        self.tvl[symbol] = new_tvl
        return new_tvl

    # ------------------------------------------------------------------
    # snapshot support
    # ------------------------------------------------------------------

    def snapshot(self) -> Tuple[Dict[str, Asset], Dict[str, int]]:
        # Asset records are frozen, so shallow copies suffice.
        return dict(self.assets), dict(self.tvl)

    def restore(self, snapshot: Tuple[Dict[str, Asset], Dict[str, int]]) -> None:
        assets, tvl = snapshot
        self.assets = dict(assets)
        self.tvl = dict(tvl)
