"""
Core types, constants and the fault taxonomy for the lending ledger.

This module provides the foundational data structures shared by every other
module:
1. Fixed-point bases and protocol-wide limits
2. Enums: asset tiers, position status, oracle source types, fault kinds
3. Exceptions: LendingError and one subclass per fault, each carrying the
   offending values in a structured `details` mapping
4. EventRecord: the immutable record committed with every successful operation

Nothing in this module mutates ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional


# ============================================================================
# CONSTANTS
# ============================================================================

# Percentage-scale fixed-point base (1.0 == WAD).
WAD = 10 ** 18

# High-precision fixed-point base used for compounding (1.0 == RAY).
RAY = 10 ** 27

HALF_WAD = WAD // 2
HALF_RAY = RAY // 2

# Ratio between the two bases.
WAD_RAY_RATIO = 10 ** 9

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# Every oracle answer is normalized to this many decimals before comparison.
PRICE_DECIMALS = 8

# Basis-point scale (100% == 10_000).
BPS_SCALE = 10_000

# A position may hold at most this many distinct collateral assets.
MAX_COLLATERAL_ASSETS = 20

# A user may open at most this many positions over the lifetime of the ledger.
MAX_POSITIONS_PER_USER = 1000

# Health factor reported for a position without debt (never liquidatable).
MAX_HEALTH_FACTOR = 2 ** 256 - 1

# Amount accepted by repay() meaning "everything outstanding".
REPAY_ALL = 2 ** 256 - 1

# Reserved wallet for issuance and redemption in the token ledger.
SYSTEM_WALLET = "system"


# ============================================================================
# ENUMS
# ============================================================================

class AssetTier(IntEnum):
    """
    Risk classification of a collateral asset.

    Integer values encode ascending risk, so max() over tiers returns the
    riskiest one.
    """
    STABLE = 0
    CROSS_A = 1
    CROSS_B = 2
    ISOLATED = 3


class PositionStatus(Enum):
    """Lifecycle status of a position. CLOSED and LIQUIDATED are terminal."""
    ACTIVE = "active"
    CLOSED = "closed"
    LIQUIDATED = "liquidated"


class OracleType(Enum):
    """Discriminates how a price source produces its answer."""
    PUSH_FEED = "push_feed"       # round-based reporter (Chainlink style)
    AMM_TWAP = "amm_twap"         # time-weighted average over pool observations


class FaultKind(Enum):
    """
    Classification of a rejected operation.

    VALIDATION:     malformed or impossible request, checked before anything else
    SOLVENCY:       request would break a credit, cap or liquidity limit
    ORACLE:         no validated price could be produced
    AUTHORIZATION:  caller lacks the role or token balance required
    ADMINISTRATIVE: the ledger is halted or already inside an operation
    """
    VALIDATION = "validation"
    SOLVENCY = "solvency"
    ORACLE = "oracle"
    AUTHORIZATION = "authorization"
    ADMINISTRATIVE = "administrative"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """
    Base exception for every rejected operation.

    Attributes:
        kind: Fault classification
        details: Structured payload with the offending values (addresses,
                 limits, requested amounts) so callers never parse messages.
    """
    kind: FaultKind = FaultKind.VALIDATION

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.details: Dict[str, Any] = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.value}: {self}, {self.details})"


# --- validation faults -------------------------------------------------------

class ValidationError(LendingError):
    """Request is malformed or refers to something that does not exist."""
    kind = FaultKind.VALIDATION


class InvalidConfiguration(ValidationError):
    """A configuration value is outside its permitted range."""
    pass


class ZeroAmount(ValidationError):
    """Raised when an operation is requested for an amount of zero."""
    pass


class AssetNotListed(ValidationError):
    """Raised when an asset is unknown to the registry."""
    pass


class AssetAlreadyListed(ValidationError):
    """Raised when registering an asset symbol twice."""
    pass


class AssetInactive(ValidationError):
    """Raised when supplying or opening a position against a deactivated asset."""
    pass


class SupplyCapExceeded(ValidationError):
    """Raised when a deposit would push an asset's TVL above its supply cap."""
    pass


class PositionNotFound(ValidationError):
    """Raised when (owner, position_id) does not exist."""
    pass


class PositionNotActive(ValidationError):
    """Raised when mutating a CLOSED or LIQUIDATED position."""
    pass


class PositionLimitReached(ValidationError):
    """Raised when a user already holds the maximum number of positions."""
    pass


class AssetLimitReached(ValidationError):
    """Raised when a position already holds the maximum number of collateral assets."""
    pass


class IsolationViolation(ValidationError):
    """Raised when collateral would break the isolated/cross separation."""
    pass


class OracleConfigurationError(ValidationError):
    """Raised on an invalid oracle source registration."""
    pass


class NotLiquidatable(ValidationError):
    """Raised when liquidating a position whose health factor is not below one."""
    pass


class FlashLoanFailed(ValidationError):
    """Raised when a flash-loan receiver fails or under-repays."""
    pass


class TransferFailed(ValidationError):
    """Raised when the token ledger rejects the transfers of an operation."""
    pass


# --- solvency faults ---------------------------------------------------------

class SolvencyError(LendingError):
    """Request would violate a credit, cap or liquidity limit."""
    kind = FaultKind.SOLVENCY


class CreditLimitExceeded(SolvencyError):
    """Raised when debt would exceed the position's credit limit."""
    pass


class IsolationDebtCapExceeded(SolvencyError):
    """Raised when an isolated position's debt would exceed its asset's cap."""
    pass


class InsufficientLiquidity(SolvencyError):
    """Raised when the protocol does not hold enough base token."""
    pass


class InsufficientCollateral(SolvencyError):
    """Raised when withdrawing more of an asset than the position holds."""
    pass


# --- oracle faults -----------------------------------------------------------

class OracleError(LendingError):
    """No validated price could be produced for an asset."""
    kind = FaultKind.ORACLE


class InvalidPrice(OracleError):
    """Raised when a source reports a non-positive price."""
    pass


class StaleRound(OracleError):
    """Raised when a source's answer was computed in an earlier round."""
    pass


class OracleTimeout(OracleError):
    """Raised when a source's report is older than the freshness threshold."""
    pass


class ExcessVolatility(OracleError):
    """Raised when an aged report moved more than the volatility threshold."""
    pass


class InsufficientOracleSources(OracleError):
    """Raised when fewer sources than required produced a valid price."""
    pass


class CircuitBreakerActive(OracleError):
    """Raised when reading the price of an asset whose breaker is engaged."""
    pass


class LargePriceDeviation(OracleError):
    """Raised when an aggregated price deviates too far from the last accepted one."""
    pass


# --- authorization faults ----------------------------------------------------

class AuthorizationError(LendingError):
    """Caller lacks the role or token balance required."""
    kind = FaultKind.AUTHORIZATION


class Unauthorized(AuthorizationError):
    """Raised when the caller does not hold the required role or ownership."""
    pass


class InsufficientGovernanceTokens(AuthorizationError):
    """Raised when a liquidator holds fewer governance tokens than required."""
    pass


# --- administrative faults ---------------------------------------------------

class AdministrativeError(LendingError):
    """Ledger is halted or busy."""
    kind = FaultKind.ADMINISTRATIVE


class ProtocolHalted(AdministrativeError):
    """Raised by every mutating operation while the ledger is paused."""
    pass


class ReentrantCall(AdministrativeError):
    """Raised when a mutating operation is entered while another is in progress."""
    pass


# ============================================================================
# EVENT RECORD
# ============================================================================

@dataclass(frozen=True, slots=True)
class EventRecord:
    """
    Immutable record committed together with a successful operation.

    Attributes:
        name: Event name (e.g. "Borrow", "InterestAccrued")
        caller: Address that initiated the operation
        timestamp: Logical ledger time of the commit
        sequence_number: Monotonic position in the ledger's event log
        payload: Event-specific values
    """
    name: str
    caller: str
    timestamp: datetime
    sequence_number: int
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def event_id(self) -> str:
        micros = int(self.timestamp.timestamp() * 1_000_000)
        return f"evt:{self.sequence_number:012d}:{micros}"

    def __repr__(self) -> str:
        w = 80

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w - 3] + "..."
            return text + " " * (w - len(text))

        bar = "─" * w
        lines = [
            f"┌{bar}┐",
            f"│{pad(' ' + self.name + ' ' + self.event_id)}│",
            f"├{bar}┤",
            f"│{pad('   caller    : ' + self.caller)}│",
            f"│{pad('   timestamp : ' + str(self.timestamp))}│",
        ]
        for key, value in self.payload.items():
            lines.append(f"│{pad(f'   {key}: {value!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def to_seconds(start: Optional[datetime], end: datetime) -> int:
    """Whole seconds elapsed from start to end (0 when start is None or later)."""
    if start is None or end <= start:
        return 0
    return int((end - start).total_seconds())
