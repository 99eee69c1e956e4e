"""
price_feeds.py - Price Source Infrastructure for the Oracle Engine

Provides the raw reporters the oracle engine validates and aggregates.

Classes:
- RoundData: One report from a source (answer, rounds, timestamps)
- PriceFeed: Protocol every source implements
- PushPriceFeed: Round-based reporter; each push opens a new round
- TwapPriceFeed: Time-weighted average of AMM pool observations

Feeds report in their own decimal precision; normalization happens in the
oracle engine.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable


@dataclass(frozen=True, slots=True)
class RoundData:
    """
    A single report from a price source.

    Attributes:
        round_id: Round the report belongs to
        answer: Reported price in the feed's own decimals
        started_at: When the round opened
        updated_at: When the answer was last written
        answered_in_round: Round in which the answer was actually computed;
                           lower than round_id means the answer was carried
                           over from an earlier round (stale)
    """
    round_id: int
    answer: int
    started_at: datetime
    updated_at: datetime
    answered_in_round: int


@runtime_checkable
class PriceFeed(Protocol):
    """
    Protocol for price sources.

    Implementations must expose their decimal precision and the latest and
    historical round data.
    """
    decimals: int

    def latest_round_data(self) -> RoundData:
        """Return the most recent report."""
        ...

    def get_round_data(self, round_id: int) -> Optional[RoundData]:
        """Return the report for a specific round, or None if unknown."""
        ...


class PushPriceFeed:
    """
    Round-based price reporter.

    Every call to push() opens a new round. A round may also be recorded as
    carried over (answered_in_round < round_id) to model a reporter that
    failed to produce a fresh answer.

    Example:
        feed = PushPriceFeed("ETH/USD", decimals=8)
        feed.push(2500_00000000, t0)
        feed.push(2510_00000000, t1)
        feed.latest_round_data().answer  # 2510_00000000
    """

    def __init__(self, description: str, decimals: int = 8):
        self.description = description
        self.decimals = decimals
        self.rounds: Dict[int, RoundData] = {}
        self.latest_round: int = 0

    def push(
        self,
        answer: int,
        updated_at: datetime,
        answered_in_round: Optional[int] = None,
        started_at: Optional[datetime] = None,
    ) -> RoundData:
        """
        Record a new round.

        Args:
            answer: Price in this feed's decimals
            updated_at: Report time
            answered_in_round: Defaults to the new round id (a fresh answer)
            started_at: Defaults to updated_at
        """
        round_id = self.latest_round + 1
        data = RoundData(
            round_id=round_id,
            answer=answer,
            started_at=started_at or updated_at,
            updated_at=updated_at,
            answered_in_round=round_id if answered_in_round is None else answered_in_round,
        )
        self.rounds[round_id] = data
        self.latest_round = round_id
        return data

    def latest_round_data(self) -> RoundData:
        """
        Raises:
            LookupError: If nothing has been pushed yet
        """
        if self.latest_round == 0:
            raise LookupError(f"{self.description}: no rounds reported")
        return self.rounds[self.latest_round]

    def get_round_data(self, round_id: int) -> Optional[RoundData]:
        return self.rounds.get(round_id)

    def __repr__(self):
        return f"PushPriceFeed({self.description}, {len(self.rounds)} rounds, decimals={self.decimals})"


class TwapPriceFeed:
    """
    Time-weighted average price over AMM pool observations.

    Each observation is the pool's spot price from its timestamp until the
    next observation. The reported answer is the average over the trailing
    `window` ending at the latest observation, weighting every spot price by
    how long it was in effect. The feed has no round semantics: every read is
    round 1 answered in round 1.
    """

    def __init__(self, pool: str, decimals: int = 8, window: timedelta = timedelta(minutes=30)):
        if window <= timedelta(0):
            raise ValueError(f"window must be positive, got {window}")
        self.pool = pool
        self.decimals = decimals
        self.window = window
        self.observations: List[Tuple[datetime, int]] = []

    def observe(self, price: int, timestamp: datetime) -> None:
        """Add a spot-price observation; observations are kept in time order."""
        timestamps = [ts for ts, _ in self.observations]
        self.observations.insert(bisect_right(timestamps, timestamp), (timestamp, price))

    def _twap(self) -> Tuple[int, datetime]:
        if not self.observations:
            raise LookupError(f"{self.pool}: no observations")
        end = self.observations[-1][0]
        start = end - self.window
        if len(self.observations) == 1 or self.observations[0][0] >= end:
            return self.observations[-1][1], end

        weighted = 0
        covered = 0
        for (ts, price), (next_ts, _) in zip(self.observations, self.observations[1:]):
            seg_start = max(ts, start)
            if next_ts <= seg_start:
                continue
            seconds = int((next_ts - seg_start).total_seconds())
            weighted += price * seconds
            covered += seconds
        if covered == 0:
            return self.observations[-1][1], end
        return weighted // covered, end

    def latest_round_data(self) -> RoundData:
        answer, updated_at = self._twap()
        return RoundData(
            round_id=1,
            answer=answer,
            started_at=updated_at,
            updated_at=updated_at,
            answered_in_round=1,
        )

    def get_round_data(self, round_id: int) -> Optional[RoundData]:
        return self.latest_round_data() if round_id == 1 else None

    def __repr__(self):
        return f"TwapPriceFeed({self.pool}, {len(self.observations)} observations, window={self.window})"
