"""
conftest.py - Shared pytest fixtures for lendledger tests

Provides:
- An empty protocol (tokens registered, roles granted, nothing listed)
- The standard market (four assets, funded users, lender liquidity)
- A bare oracle engine over a fresh registry
"""

import pytest

from lendledger import AssetRegistry, GlobalOracleConfig, OracleEngine

from tests.market import create_market, create_protocol


@pytest.fixture
def empty_protocol():
    """Protocol with tokens and roles but no listed assets."""
    return create_protocol()


@pytest.fixture
def market():
    """Standard market; see tests/market.py."""
    return create_market()


@pytest.fixture
def registry():
    return AssetRegistry()


@pytest.fixture
def engine(registry):
    """Oracle engine with default thresholds over an empty registry."""
    return OracleEngine(registry, GlobalOracleConfig())
