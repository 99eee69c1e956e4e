"""
config.py - Process-wide Configuration Records

Three immutable configuration records parameterize the ledger:

1. GlobalOracleConfig: freshness, volatility and circuit-breaker thresholds
2. ProtocolConfig: interest targets, rewards, liquidator eligibility, flash fee
3. TierParameters: per-tier jump rate and liquidation fee

Each record validates itself in __post_init__ and raises
InvalidConfiguration on any out-of-range value, so an invalid configuration
can never be installed. Updates go through with_updates(), which builds a new
validated instance; ProtocolConfig additionally bumps its version.

All rates and fees are WAD fractions unless stated otherwise.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping

from .core import WAD, AssetTier, InvalidConfiguration


DAY = 24 * 60 * 60


# ============================================================================
# ORACLE CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class GlobalOracleConfig:
    """
    Thresholds applied to every oracle read.

    Attributes:
        freshness_threshold: Maximum age in seconds of an accepted report
        volatility_window: Age in seconds beyond which a report must also pass
                           the volatility check (must not exceed freshness)
        volatility_percentage: Maximum whole-percent change from the previous
                               round for an aged report
        circuit_breaker_percentage: Maximum whole-percent deviation of an
                                    aggregated price from the last accepted one
        minimum_oracle_count: Default quorum for assets that do not set one
    """
    freshness_threshold: int = 28800
    volatility_window: int = 3600
    volatility_percentage: int = 20
    circuit_breaker_percentage: int = 50
    minimum_oracle_count: int = 2

    def __post_init__(self):
        if self.freshness_threshold <= 0:
            raise InvalidConfiguration(
                "freshness_threshold must be positive",
                field="freshness_threshold", value=self.freshness_threshold,
            )
        if not 0 < self.volatility_window <= self.freshness_threshold:
            raise InvalidConfiguration(
                "volatility_window must be in (0, freshness_threshold]",
                field="volatility_window", value=self.volatility_window,
            )
        if not 0 < self.volatility_percentage < 100:
            raise InvalidConfiguration(
                "volatility_percentage must be in (0, 100)",
                field="volatility_percentage", value=self.volatility_percentage,
            )
        if self.circuit_breaker_percentage <= self.volatility_percentage:
            raise InvalidConfiguration(
                "circuit_breaker_percentage must exceed volatility_percentage",
                field="circuit_breaker_percentage", value=self.circuit_breaker_percentage,
            )
        if self.minimum_oracle_count < 1:
            raise InvalidConfiguration(
                "minimum_oracle_count must be at least 1",
                field="minimum_oracle_count", value=self.minimum_oracle_count,
            )

    def with_updates(self, **changes: Any) -> GlobalOracleConfig:
        """Return a validated copy with the given fields replaced."""
        _reject_unknown(self, changes)
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> GlobalOracleConfig:
        """Build from a plain dict (unknown keys are rejected)."""
        _reject_unknown(cls, raw)
        return cls(**{k: int(v) for k, v in raw.items()})


# ============================================================================
# PROTOCOL CONFIGURATION
# ============================================================================

# Bounds on manager-settable protocol parameters.
MIN_PROFIT_TARGET_RATE = WAD // 400        # 0.25%
MIN_BASE_BORROW_RATE = WAD // 100          # 1%
MAX_REWARD_AMOUNT = 10_000 * WAD           # governance tokens per claim
MIN_REWARD_INTERVAL = 90 * DAY
MIN_REWARD_ELIGIBILITY = 20_000 * 10 ** 6  # base token, 6 decimals
MIN_LIQUIDATOR_THRESHOLD = 10 * WAD        # governance tokens
MAX_FLASH_LOAN_FEE = 100                   # bps


@dataclass(frozen=True, slots=True)
class ProtocolConfig:
    """
    Economic parameters of the protocol.

    Attributes:
        profit_target_rate: Margin added on top of the break-even borrow rate
        base_borrow_rate: Floor for the break-even borrow rate
        reward_amount: Governance tokens granted per full reward interval
        reward_interval: Seconds of sustained supply before a reward is claimable
        reward_eligibility_threshold: Minimum supplied base-token amount for rewards
        liquidator_threshold: Governance tokens a liquidator must hold
        flash_loan_fee: Flash-loan fee in basis points
        version: Incremented on every successful update
    """
    profit_target_rate: int = WAD // 100                 # 1%
    base_borrow_rate: int = 6 * WAD // 100               # 6%
    reward_amount: int = 2_000 * WAD
    reward_interval: int = 180 * DAY
    reward_eligibility_threshold: int = 100_000 * 10 ** 6
    liquidator_threshold: int = 20_000 * WAD
    flash_loan_fee: int = 9
    version: int = 1

    def __post_init__(self):
        _check(self.profit_target_rate >= MIN_PROFIT_TARGET_RATE, "profit_target_rate", self.profit_target_rate)
        _check(self.base_borrow_rate >= MIN_BASE_BORROW_RATE, "base_borrow_rate", self.base_borrow_rate)
        _check(0 < self.reward_amount <= MAX_REWARD_AMOUNT, "reward_amount", self.reward_amount)
        _check(self.reward_interval >= MIN_REWARD_INTERVAL, "reward_interval", self.reward_interval)
        _check(self.reward_eligibility_threshold >= MIN_REWARD_ELIGIBILITY, "reward_eligibility_threshold",
               self.reward_eligibility_threshold)
        _check(self.liquidator_threshold >= MIN_LIQUIDATOR_THRESHOLD, "liquidator_threshold",
               self.liquidator_threshold)
        _check(0 <= self.flash_loan_fee <= MAX_FLASH_LOAN_FEE, "flash_loan_fee", self.flash_loan_fee)

    def with_updates(self, **changes: Any) -> ProtocolConfig:
        """Return a validated copy with the given fields replaced and version bumped."""
        if "version" in changes:
            raise InvalidConfiguration("version is managed by the ledger", field="version")
        _reject_unknown(self, changes)
        return replace(self, version=self.version + 1, **changes)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProtocolConfig:
        """Build from a plain dict (unknown keys are rejected)."""
        _reject_unknown(cls, raw)
        return cls(**{k: int(v) for k, v in raw.items()})


# ============================================================================
# TIER PARAMETERS
# ============================================================================

MAX_JUMP_RATE = WAD // 4                 # 25%
MAX_LIQUIDATION_FEE = WAD // 10          # 10%


@dataclass(frozen=True, slots=True)
class TierConfig:
    """Rate premium and liquidation fee of one risk tier."""
    jump_rate: int
    liquidation_fee: int

    def __post_init__(self):
        _check(0 <= self.jump_rate <= MAX_JUMP_RATE, "jump_rate", self.jump_rate)
        _check(0 <= self.liquidation_fee <= MAX_LIQUIDATION_FEE, "liquidation_fee", self.liquidation_fee)


def _default_tiers() -> Dict[AssetTier, TierConfig]:
    return {
        AssetTier.STABLE: TierConfig(jump_rate=5 * WAD // 100, liquidation_fee=WAD // 100),
        AssetTier.CROSS_A: TierConfig(jump_rate=8 * WAD // 100, liquidation_fee=2 * WAD // 100),
        AssetTier.CROSS_B: TierConfig(jump_rate=12 * WAD // 100, liquidation_fee=3 * WAD // 100),
        AssetTier.ISOLATED: TierConfig(jump_rate=15 * WAD // 100, liquidation_fee=4 * WAD // 100),
    }


@dataclass(frozen=True, slots=True)
class TierParameters:
    """Per-tier configuration; every tier must be present."""
    tiers: Mapping[AssetTier, TierConfig] = field(default_factory=_default_tiers)

    def __post_init__(self):
        missing = [t.name for t in AssetTier if t not in self.tiers]
        if missing:
            raise InvalidConfiguration(f"missing tier parameters: {missing}", missing=missing)

    def jump_rate(self, tier: AssetTier) -> int:
        return self.tiers[tier].jump_rate

    def liquidation_fee(self, tier: AssetTier) -> int:
        return self.tiers[tier].liquidation_fee

    def with_tier(self, tier: AssetTier, jump_rate: int, liquidation_fee: int) -> TierParameters:
        """Return a copy with one tier replaced."""
        tiers = dict(self.tiers)
        tiers[tier] = TierConfig(jump_rate=jump_rate, liquidation_fee=liquidation_fee)
        return TierParameters(tiers=tiers)


# ============================================================================
# HELPERS
# ============================================================================

def _check(ok: bool, name: str, value: Any) -> None:
    if not ok:
        raise InvalidConfiguration(f"{name} out of range: {value}", field=name, value=value)


def _reject_unknown(target: Any, raw: Mapping[str, Any]) -> None:
    known = {f.name for f in fields(target)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise InvalidConfiguration(f"unknown configuration keys: {unknown}", unknown=unknown)
