"""
lendledger - Collateralized Lending Ledger

A deterministic lending core: collateral positions, base-token credit with
per-second compounding interest, liquidation, flash loans, lender shares and
a multi-source oracle with quorum, staleness, volatility and circuit-breaker
protection.

Usage:
    from datetime import datetime
    from lendledger import (
        LendingProtocol, TokenLedger, Token, AccessControl, Role,
        Asset, AssetTier, OracleSource, PushPriceFeed, WAD,
    )

    t0 = datetime(2025, 1, 1)
    tokens = TokenLedger("main")
    for token in (Token("USDC", "USD Coin", 6), Token("GOV", "Governance", 18),
                  Token("WETH", "Wrapped Ether", 18)):
        tokens.register_token(token)

    access = AccessControl(admin="gov")
    access.grant_role("gov", Role.MANAGER, "gov")

    protocol = LendingProtocol("lend", tokens, access, "USDC", "GOV", initial_time=t0)
    protocol.add_asset("gov", Asset("WETH", 18, AssetTier.CROSS_A,
                                    borrow_threshold=80 * WAD // 100,
                                    liquidation_threshold=85 * WAD // 100,
                                    max_supply_threshold=10_000 * 10**18,
                                    minimum_oracle_count=1))
    feed = PushPriceFeed("ETH/USD")
    feed.push(2500_00000000, t0)
    protocol.add_oracle_source("gov", "WETH", OracleSource("eth-usd", feed, 8))

    tokens.register_wallet("alice")
    tokens.issue("alice", "WETH", 10 * 10**18)
    pid = protocol.create_position("alice", "WETH")
    protocol.supply_collateral("alice", "WETH", 10 * 10**18, pid)
"""

# Core types
from .core import (
    WAD, RAY, SECONDS_PER_YEAR, PRICE_DECIMALS, BPS_SCALE,
    MAX_COLLATERAL_ASSETS, MAX_POSITIONS_PER_USER, MAX_HEALTH_FACTOR,
    REPAY_ALL, SYSTEM_WALLET,
    AssetTier, PositionStatus, OracleType, FaultKind,
    EventRecord,
    LendingError, ValidationError, SolvencyError, OracleError,
    AuthorizationError, AdministrativeError,
    InvalidConfiguration, ZeroAmount, AssetNotListed, AssetAlreadyListed,
    AssetInactive, SupplyCapExceeded, PositionNotFound, PositionNotActive,
    PositionLimitReached, AssetLimitReached, IsolationViolation,
    OracleConfigurationError, NotLiquidatable, FlashLoanFailed, TransferFailed,
    CreditLimitExceeded, IsolationDebtCapExceeded, InsufficientLiquidity,
    InsufficientCollateral,
    InvalidPrice, StaleRound, OracleTimeout, ExcessVolatility,
    InsufficientOracleSources, CircuitBreakerActive, LargePriceDeviation,
    Unauthorized, InsufficientGovernanceTokens,
    ProtocolHalted, ReentrantCall,
)

# Fixed-point math
from .fixed_point import (
    ray_mul, ray_div, wad_mul, wad_div, wad_to_ray, ray_to_wad,
    rpow, annual_rate_to_ray, accrual_factor, compound,
    percent_change, bps_of,
)

# Configuration and access control
from .config import GlobalOracleConfig, ProtocolConfig, TierConfig, TierParameters
from .access import AccessControl, Role

# Price feeds and oracle
from .price_feeds import RoundData, PriceFeed, PushPriceFeed, TwapPriceFeed
from .oracle import OracleEngine, OracleState, median_price, normalize_price

# Assets and positions
from .assets import Asset, AssetRegistry, OracleSource
from .positions import Position, PositionBook

# Risk engine - pure function architecture
from .risk import (
    MarketState, PositionSummary, RiskEngine,
    calculate_asset_value, calculate_collateral_value, calculate_credit_limit,
    calculate_liquidation_value, calculate_health_factor, calculate_position_tier,
    calculate_utilization, calculate_supply_rate, calculate_borrow_rate,
    calculate_debt_with_interest,
)

# Token ledger
from .tokens import ExecuteResult, Move, Token, TokenLedger, Transfer

# Rewards
from .rewards import (
    RewardDistributor, TokenRewardDistributor, calculate_reward, is_reward_eligible,
)

# Controller
from .protocol import FlashLoanReceiver, LedgerTotals, LendingProtocol


__all__ = [
    # Constants
    'WAD', 'RAY', 'SECONDS_PER_YEAR', 'PRICE_DECIMALS', 'BPS_SCALE',
    'MAX_COLLATERAL_ASSETS', 'MAX_POSITIONS_PER_USER', 'MAX_HEALTH_FACTOR',
    'REPAY_ALL', 'SYSTEM_WALLET',
    # Enums and records
    'AssetTier', 'PositionStatus', 'OracleType', 'FaultKind', 'EventRecord',
    # Faults
    'LendingError', 'ValidationError', 'SolvencyError', 'OracleError',
    'AuthorizationError', 'AdministrativeError',
    'InvalidConfiguration', 'ZeroAmount', 'AssetNotListed', 'AssetAlreadyListed',
    'AssetInactive', 'SupplyCapExceeded', 'PositionNotFound', 'PositionNotActive',
    'PositionLimitReached', 'AssetLimitReached', 'IsolationViolation',
    'OracleConfigurationError', 'NotLiquidatable', 'FlashLoanFailed', 'TransferFailed',
    'CreditLimitExceeded', 'IsolationDebtCapExceeded', 'InsufficientLiquidity',
    'InsufficientCollateral',
    'InvalidPrice', 'StaleRound', 'OracleTimeout', 'ExcessVolatility',
    'InsufficientOracleSources', 'CircuitBreakerActive', 'LargePriceDeviation',
    'Unauthorized', 'InsufficientGovernanceTokens',
    'ProtocolHalted', 'ReentrantCall',
    # Fixed-point math
    'ray_mul', 'ray_div', 'wad_mul', 'wad_div', 'wad_to_ray', 'ray_to_wad',
    'rpow', 'annual_rate_to_ray', 'accrual_factor', 'compound',
    'percent_change', 'bps_of',
    # Configuration
    'GlobalOracleConfig', 'ProtocolConfig', 'TierConfig', 'TierParameters',
    'AccessControl', 'Role',
    # Oracle
    'RoundData', 'PriceFeed', 'PushPriceFeed', 'TwapPriceFeed',
    'OracleEngine', 'OracleState', 'median_price', 'normalize_price',
    # Assets and positions
    'Asset', 'AssetRegistry', 'OracleSource', 'Position', 'PositionBook',
    # Risk - Pure Function Architecture
    'MarketState', 'PositionSummary', 'RiskEngine',
    'calculate_asset_value', 'calculate_collateral_value', 'calculate_credit_limit',
    'calculate_liquidation_value', 'calculate_health_factor', 'calculate_position_tier',
    'calculate_utilization', 'calculate_supply_rate', 'calculate_borrow_rate',
    'calculate_debt_with_interest',
    # Tokens
    'ExecuteResult', 'Move', 'Token', 'TokenLedger', 'Transfer',
    # Rewards
    'RewardDistributor', 'TokenRewardDistributor', 'calculate_reward', 'is_reward_eligible',
    # Controller
    'FlashLoanReceiver', 'LedgerTotals', 'LendingProtocol',
]

__version__ = '1.0.0'
