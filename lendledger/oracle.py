"""
oracle.py - Oracle Validation and Aggregation Engine

Turns raw reports from an asset's price sources into one validated price.

Per-source validation (in order):
    1. answer must be positive                         -> InvalidPrice
    2. answer must come from the current round         -> StaleRound
    3. report age must not exceed freshness threshold  -> OracleTimeout
    4. a report older than the volatility window must
       not have moved more than the volatility
       percentage since the previous round             -> ExcessVolatility

Aggregation:
    - an engaged circuit breaker rejects every read     -> CircuitBreakerActive
    - at least the quorum of sources must validate, except that a single
      active primary source may stand alone          -> InsufficientOracleSources
    - the median of the valid, normalized prices is the candidate
    - a candidate deviating from the last accepted price by more than the
      circuit-breaker percentage is refused            -> LargePriceDeviation
    - otherwise it becomes the new baseline and is returned

All prices leaving this module carry PRICE_DECIMALS decimals.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .assets import AssetRegistry, OracleSource
from .config import GlobalOracleConfig
from .core import (
    PRICE_DECIMALS, OracleType, to_seconds,
    OracleError, InvalidPrice, StaleRound, OracleTimeout, ExcessVolatility,
    InsufficientOracleSources, CircuitBreakerActive, LargePriceDeviation,
)
from .fixed_point import percent_change

logger = logging.getLogger(__name__)


# ============================================================================
# PURE HELPERS
# ============================================================================

def normalize_price(answer: int, decimals: int) -> int:
    """Rescale an answer from `decimals` to PRICE_DECIMALS (truncating)."""
    if decimals == PRICE_DECIMALS:
        return answer
    if decimals > PRICE_DECIMALS:
        return answer // 10 ** (decimals - PRICE_DECIMALS)
    return answer * 10 ** (PRICE_DECIMALS - decimals)


def median_price(prices: Sequence[int]) -> int:
    """
    Median of a non-empty list; the floor of the mean of the middle pair
    when the count is even.

    Example:
        median_price([100, 300, 200]) -> 200
        median_price([100, 200]) -> 150
        median_price([1, 2]) -> 1
    """
    if not prices:
        raise ValueError("median of empty price list")
    ordered = sorted(prices)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) // 2


# ============================================================================
# RUNTIME STATE
# ============================================================================

@dataclass
class OracleState:
    """
    Mutable per-asset oracle state.

    Attributes:
        breaker_engaged: While True every price read for the asset fails
        last_valid_price: Baseline for the deviation check (None until first read)
        last_update_time: When last_valid_price was accepted
    """
    breaker_engaged: bool = False
    last_valid_price: Optional[int] = None
    last_update_time: Optional[datetime] = None


class OracleEngine:
    """
    Validates and aggregates the price sources registered in an AssetRegistry.

    The engine owns only the per-asset runtime state; source definitions live
    in the registry, thresholds in the GlobalOracleConfig.

    Example:
        engine = OracleEngine(registry, GlobalOracleConfig())
        price = engine.get_asset_price("WETH", now)   # 8-decimal price
    """

    def __init__(self, registry: AssetRegistry, config: Optional[GlobalOracleConfig] = None):
        self.registry = registry
        self.config = config or GlobalOracleConfig()
        self.states: Dict[str, OracleState] = {}

    def state(self, symbol: str) -> OracleState:
        self.registry.get(symbol)
        return self.states.setdefault(symbol, OracleState())

    # ------------------------------------------------------------------
    # single source
    # ------------------------------------------------------------------

    def read_source(self, symbol: str, source: OracleSource, now: datetime) -> int:
        """
        Validate one source's latest report and return its normalized price.

        Raises:
            InvalidPrice, StaleRound, OracleTimeout, ExcessVolatility
        """
        cfg = self.config
        try:
            data = source.feed.latest_round_data()
        except LookupError as exc:
            raise InvalidPrice(
                f"{symbol}: source {source.source_id} has no report",
                asset=symbol, source_id=source.source_id, reason=str(exc),
            ) from exc

        if data.answer <= 0:
            raise InvalidPrice(
                f"{symbol}: source {source.source_id} reported {data.answer}",
                asset=symbol, source_id=source.source_id, price=data.answer,
            )
        if data.answered_in_round < data.round_id:
            raise StaleRound(
                f"{symbol}: source {source.source_id} answered in round "
                f"{data.answered_in_round} < {data.round_id}",
                asset=symbol, source_id=source.source_id,
                round_id=data.round_id, answered_in_round=data.answered_in_round,
            )
        age = to_seconds(data.updated_at, now)
        if age > cfg.freshness_threshold:
            raise OracleTimeout(
                f"{symbol}: source {source.source_id} report is {age}s old",
                asset=symbol, source_id=source.source_id,
                age=age, threshold=cfg.freshness_threshold,
            )
        if source.oracle_type == OracleType.PUSH_FEED and age > cfg.volatility_window:
            previous = source.feed.get_round_data(data.round_id - 1) if data.round_id > 1 else None
            if previous is not None and previous.answer > 0:
                change = percent_change(previous.answer, data.answer)
                if change > cfg.volatility_percentage:
                    raise ExcessVolatility(
                        f"{symbol}: source {source.source_id} moved {change}% since round "
                        f"{previous.round_id}",
                        asset=symbol, source_id=source.source_id, change=change,
                        threshold=cfg.volatility_percentage,
                        previous_price=previous.answer, price=data.answer,
                    )
        normalized = normalize_price(data.answer, source.decimals)
        if normalized <= 0:
            raise InvalidPrice(
                f"{symbol}: source {source.source_id} reported {data.answer}, below one price unit",
                asset=symbol, source_id=source.source_id, price=data.answer, decimals=source.decimals,
            )
        return normalized

    # ------------------------------------------------------------------
    # aggregation
    # ------------------------------------------------------------------

    def required_sources(self, symbol: str) -> int:
        asset = self.registry.get(symbol)
        return asset.minimum_oracle_count or self.config.minimum_oracle_count

    def get_asset_price(self, symbol: str, now: datetime) -> int:
        """
        Validated, aggregated price of an asset; commits the new baseline.

        Raises:
            AssetNotListed: If symbol is unknown
            CircuitBreakerActive: If the asset's breaker is engaged
            InsufficientOracleSources: If the quorum is not met
            LargePriceDeviation: If the median moved too far from the baseline
            OracleError: The primary's own fault when it is the only source
        """
        asset = self.registry.get(symbol)
        state = self.state(symbol)
        if state.breaker_engaged:
            raise CircuitBreakerActive(f"{symbol}: circuit breaker engaged", asset=symbol)

        active = asset.active_oracles()
        required = self.required_sources(symbol)
        prices: List[int] = []
        failures: Dict[str, OracleError] = {}
        for source in active:
            try:
                prices.append(self.read_source(symbol, source, now))
            except OracleError as exc:
                failures[source.source_id] = exc
                logger.warning(
                    "Oracle source rejected",
                    extra={
                        "event": "oracle.source_rejected",
                        "asset": symbol,
                        "source_id": source.source_id,
                        "fault": type(exc).__name__,
                    },
                )

        if len(prices) < required:
            single_primary = len(active) == 1 and active[0].source_id == asset.primary_oracle
            if not single_primary:
                raise InsufficientOracleSources(
                    f"{symbol}: {len(prices)} valid sources, {required} required",
                    asset=symbol, required=required, valid=len(prices),
                    active=len(active), failures=sorted(failures),
                )
            if asset.primary_oracle in failures:
                raise failures[asset.primary_oracle]

        candidate = median_price(prices)

        if state.last_valid_price:
            deviation = percent_change(state.last_valid_price, candidate)
            if deviation > self.config.circuit_breaker_percentage:
                logger.warning(
                    "Aggregated price deviates from baseline",
                    extra={
                        "event": "oracle.large_deviation",
                        "asset": symbol,
                        "previous_price": state.last_valid_price,
                        "price": candidate,
                        "deviation": deviation,
                    },
                )
                raise LargePriceDeviation(
                    f"{symbol}: price moved {deviation}% from {state.last_valid_price} to {candidate}",
                    asset=symbol, previous_price=state.last_valid_price,
                    price=candidate, deviation=deviation,
                    threshold=self.config.circuit_breaker_percentage,
                )

        state.last_valid_price = candidate
        state.last_update_time = now
        return candidate

    # ------------------------------------------------------------------
    # breaker and baseline controls
    # ------------------------------------------------------------------

    def trigger_circuit_breaker(self, symbol: str) -> None:
        self.state(symbol).breaker_engaged = True
        logger.warning("Circuit breaker engaged",
                       extra={"event": "oracle.breaker_engaged", "asset": symbol})

    def reset_circuit_breaker(self, symbol: str) -> None:
        self.state(symbol).breaker_engaged = False
        logger.info("Circuit breaker reset",
                    extra={"event": "oracle.breaker_reset", "asset": symbol})

    def clear_price_baseline(self, symbol: str) -> None:
        """Forget the last accepted price so the next read sets a fresh baseline."""
        state = self.state(symbol)
        state.last_valid_price = None
        state.last_update_time = None

    # ------------------------------------------------------------------
    # diagnostics
    # ------------------------------------------------------------------

    def oracle_health(self, symbol: str, now: datetime) -> Dict[str, object]:
        """
        Per-source validation status without touching the baseline.

        Returns:
            Dict with 'asset', 'breaker_engaged', 'last_valid_price',
            'required', 'valid' and 'sources' (one entry per registered
            source: source_id, type, active, primary, price or fault)
        """
        asset = self.registry.get(symbol)
        state = self.state(symbol)
        sources = []
        valid = 0
        for source in asset.oracles:
            entry: Dict[str, object] = {
                "source_id": source.source_id,
                "type": source.oracle_type.value,
                "active": source.active,
                "primary": source.source_id == asset.primary_oracle,
            }
            try:
                entry["price"] = self.read_source(symbol, source, now)
                if source.active:
                    valid += 1
            except OracleError as exc:
                entry["fault"] = type(exc).__name__
            sources.append(entry)
        return {
            "asset": symbol,
            "breaker_engaged": state.breaker_engaged,
            "last_valid_price": state.last_valid_price,
            "required": self.required_sources(symbol),
            "valid": valid,
            "sources": sources,
        }

    # ------------------------------------------------------------------
    # snapshot support
    # ------------------------------------------------------------------

    def snapshot(self):
        return copy.deepcopy(self.states), self.config

    def restore(self, snapshot) -> None:
        states, config = snapshot
        self.states = copy.deepcopy(states)
        self.config = config
