"""
test_rewards.py - Unit tests for reward eligibility and distribution
"""

import pytest
from datetime import datetime, timedelta

from lendledger import (
    WAD, ExecuteResult, ProtocolConfig, RewardDistributor, Token, TokenLedger,
    TokenRewardDistributor, calculate_reward, is_reward_eligible,
)
from lendledger.config import DAY


T0 = datetime(2025, 1, 1)
CONFIG = ProtocolConfig()


class TestEligibility:

    def test_eligible_after_full_interval(self):
        now = T0 + timedelta(seconds=CONFIG.reward_interval)
        assert is_reward_eligible(100_000 * 10 ** 6, T0, now, CONFIG)

    def test_interval_not_complete(self):
        now = T0 + timedelta(seconds=CONFIG.reward_interval - 1)
        assert not is_reward_eligible(100_000 * 10 ** 6, T0, now, CONFIG)

    def test_below_threshold(self):
        now = T0 + timedelta(days=365)
        assert not is_reward_eligible(100_000 * 10 ** 6 - 1, T0, now, CONFIG)

    def test_never_supplied(self):
        assert not is_reward_eligible(10 ** 12, None, T0, CONFIG)


class TestRewardAmount:

    def test_one_interval(self):
        now = T0 + timedelta(seconds=CONFIG.reward_interval)
        assert calculate_reward(T0, now, CONFIG, 10_000 * WAD) == 2_000 * WAD

    def test_linear_in_time(self):
        now = T0 + timedelta(days=270)
        assert calculate_reward(T0, now, CONFIG, 10_000 * WAD) == 3_000 * WAD

    def test_capped(self):
        now = T0 + timedelta(days=3_650)
        assert calculate_reward(T0, now, CONFIG, 10_000 * WAD) == 10_000 * WAD

    def test_custom_interval(self):
        config = ProtocolConfig(reward_interval=90 * DAY, reward_amount=1_000 * WAD)
        now = T0 + timedelta(days=45)
        assert calculate_reward(T0, now, config, 10_000 * WAD) == 500 * WAD


class TestTokenRewardDistributor:

    def _distributor(self):
        tokens = TokenLedger("rewards")
        tokens.register_token(Token("GOV", "Governance", 18))
        tokens.register_wallet("alice")
        return tokens, TokenRewardDistributor(tokens, "GOV", max_reward=10_000 * WAD)

    def test_distribute_issues_tokens(self):
        tokens, distributor = self._distributor()
        distributor.distribute("alice", 2_000 * WAD)
        assert tokens.get_balance("alice", "GOV") == 2_000 * WAD
        assert distributor.total_distributed == 2_000 * WAD

    def test_above_cap(self):
        _, distributor = self._distributor()
        with pytest.raises(ValueError):
            distributor.distribute("alice", 10_001 * WAD)

    def test_unknown_recipient(self):
        _, distributor = self._distributor()
        with pytest.raises(RuntimeError):
            distributor.distribute("ghost", WAD)
        assert distributor.total_distributed == 0

    def test_total_follows_restored_ledger(self):
        tokens, distributor = self._distributor()
        tokens.issue("alice", "GOV", 500 * WAD)
        snapshot = tokens.clone()
        distributor.distribute("alice", 2_000 * WAD)
        assert distributor.total_distributed == 2_000 * WAD
        tokens.restore_from(snapshot)
        assert distributor.total_distributed == 0
        assert tokens.get_balance("alice", "GOV") == 500 * WAD

    def test_positive_cap_required(self):
        tokens, _ = self._distributor()
        with pytest.raises(ValueError):
            TokenRewardDistributor(tokens, "GOV", max_reward=0)

    def test_satisfies_protocol(self):
        _, distributor = self._distributor()
        assert isinstance(distributor, RewardDistributor)
