"""
test_core_types.py - Unit tests for core constants, faults and event records
"""

import pytest
from datetime import datetime, timedelta

from lendledger import (
    MAX_HEALTH_FACTOR, REPAY_ALL, AssetTier, EventRecord, FaultKind,
    LendingError, ValidationError, SolvencyError, OracleError,
    AuthorizationError, AdministrativeError,
    ZeroAmount, CreditLimitExceeded, IsolationDebtCapExceeded, StaleRound,
    CircuitBreakerActive, Unauthorized, InsufficientGovernanceTokens,
    ProtocolHalted, ReentrantCall, FlashLoanFailed,
)
from lendledger.core import to_seconds


class TestConstants:

    def test_sentinels(self):
        assert MAX_HEALTH_FACTOR == 2 ** 256 - 1
        assert REPAY_ALL == 2 ** 256 - 1

    def test_tiers_ordered_by_risk(self):
        assert max(AssetTier.STABLE, AssetTier.CROSS_B, AssetTier.CROSS_A) == AssetTier.CROSS_B
        assert AssetTier.ISOLATED > AssetTier.CROSS_B > AssetTier.CROSS_A > AssetTier.STABLE


class TestFaults:

    @pytest.mark.parametrize("exc_type, base, kind", [
        (ZeroAmount, ValidationError, FaultKind.VALIDATION),
        (FlashLoanFailed, ValidationError, FaultKind.VALIDATION),
        (CreditLimitExceeded, SolvencyError, FaultKind.SOLVENCY),
        (IsolationDebtCapExceeded, SolvencyError, FaultKind.SOLVENCY),
        (StaleRound, OracleError, FaultKind.ORACLE),
        (CircuitBreakerActive, OracleError, FaultKind.ORACLE),
        (Unauthorized, AuthorizationError, FaultKind.AUTHORIZATION),
        (InsufficientGovernanceTokens, AuthorizationError, FaultKind.AUTHORIZATION),
        (ProtocolHalted, AdministrativeError, FaultKind.ADMINISTRATIVE),
        (ReentrantCall, AdministrativeError, FaultKind.ADMINISTRATIVE),
    ])
    def test_taxonomy(self, exc_type, base, kind):
        exc = exc_type("boom", amount=1)
        assert isinstance(exc, base)
        assert isinstance(exc, LendingError)
        assert exc.kind == kind

    def test_details_and_message(self):
        exc = CreditLimitExceeded("debt above limit", credit_limit=10, debt=11)
        assert str(exc) == "debt above limit"
        assert exc.details == {"credit_limit": 10, "debt": 11}
        assert "solvency" in repr(exc)


class TestEventRecord:

    def test_event_id(self):
        ts = datetime(2025, 1, 1)
        record = EventRecord("Borrow", "alice", ts, 7, {"amount": 5})
        assert record.event_id.startswith("evt:000000000007:")

    def test_repr_box(self):
        record = EventRecord("Borrow", "alice", datetime(2025, 1, 1), 0, {"amount": 5})
        text = repr(record)
        assert text.startswith("┌")
        assert "Borrow" in text
        assert "amount: 5" in text

    def test_frozen(self):
        record = EventRecord("Borrow", "alice", datetime(2025, 1, 1), 0)
        with pytest.raises(AttributeError):
            record.name = "Repay"


class TestToSeconds:

    def test_elapsed(self):
        t = datetime(2025, 1, 1)
        assert to_seconds(t, t + timedelta(hours=1, microseconds=500)) == 3_600

    def test_non_positive(self):
        t = datetime(2025, 1, 1)
        assert to_seconds(None, t) == 0
        assert to_seconds(t, t) == 0
        assert to_seconds(t, t - timedelta(seconds=1)) == 0
