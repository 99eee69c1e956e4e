"""
test_price_feeds.py - Unit tests for push and TWAP price feeds

Tests:
- Round bookkeeping of PushPriceFeed
- Carried-over rounds (answered_in_round)
- Time-weighted averaging of TwapPriceFeed
- PriceFeed protocol conformance
"""

import pytest
from datetime import datetime, timedelta

from lendledger import PriceFeed, PushPriceFeed, RoundData, TwapPriceFeed


T0 = datetime(2025, 1, 1)


# ============================================================================
# PUSH FEED
# ============================================================================

class TestPushPriceFeed:

    def test_push_opens_rounds(self):
        feed = PushPriceFeed("ETH/USD")
        first = feed.push(2_000_00000000, T0)
        second = feed.push(2_010_00000000, T0 + timedelta(minutes=5))

        assert first.round_id == 1
        assert second.round_id == 2
        assert feed.latest_round == 2
        assert feed.latest_round_data() == second
        assert feed.get_round_data(1) == first

    def test_fresh_answer_defaults(self):
        data = PushPriceFeed("ETH/USD").push(100, T0)
        assert data.answered_in_round == data.round_id
        assert data.started_at == T0
        assert data.updated_at == T0

    def test_carried_over_round(self):
        feed = PushPriceFeed("ETH/USD")
        feed.push(100, T0)
        data = feed.push(100, T0 + timedelta(minutes=1), answered_in_round=1)
        assert data.round_id == 2
        assert data.answered_in_round == 1

    def test_empty_feed(self):
        feed = PushPriceFeed("ETH/USD")
        with pytest.raises(LookupError):
            feed.latest_round_data()
        assert feed.get_round_data(1) is None

    def test_is_price_feed(self):
        assert isinstance(PushPriceFeed("ETH/USD"), PriceFeed)


# ============================================================================
# TWAP FEED
# ============================================================================

class TestTwapPriceFeed:

    def _pool(self, window_minutes=30):
        feed = TwapPriceFeed("WETH/USDC", decimals=8, window=timedelta(minutes=window_minutes))
        feed.observe(100, T0)
        feed.observe(200, T0 + timedelta(minutes=10))
        feed.observe(300, T0 + timedelta(minutes=20))
        return feed

    def test_average_over_covered_history(self):
        """Ten minutes at 100 and ten at 200; the latest spot has no duration yet."""
        data = self._pool().latest_round_data()
        assert data.answer == 150
        assert data.updated_at == T0 + timedelta(minutes=20)

    def test_window_truncates_older_segments(self):
        """Five minutes at 100, ten at 200 -> 2500 / 15 floored."""
        assert self._pool(window_minutes=15).latest_round_data().answer == 166

    def test_out_of_order_observations(self):
        feed = TwapPriceFeed("WETH/USDC")
        feed.observe(200, T0 + timedelta(minutes=10))
        feed.observe(300, T0 + timedelta(minutes=20))
        feed.observe(100, T0)
        assert feed.latest_round_data().answer == 150

    def test_single_observation(self):
        feed = TwapPriceFeed("WETH/USDC")
        feed.observe(4_242, T0)
        data = feed.latest_round_data()
        assert data == RoundData(1, 4_242, T0, T0, 1)

    def test_no_round_semantics(self):
        feed = self._pool()
        assert feed.get_round_data(1).answer == 150
        assert feed.get_round_data(2) is None

    def test_empty_pool(self):
        with pytest.raises(LookupError):
            TwapPriceFeed("WETH/USDC").latest_round_data()

    def test_window_must_be_positive(self):
        with pytest.raises(ValueError):
            TwapPriceFeed("WETH/USDC", window=timedelta(0))

    def test_is_price_feed(self):
        assert isinstance(TwapPriceFeed("WETH/USDC"), PriceFeed)
