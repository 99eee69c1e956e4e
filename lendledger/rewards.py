"""
rewards.py - Liquidity Supplier Rewards

Suppliers who keep at least the eligibility threshold in the pool for a full
reward interval may claim governance tokens. The nominal reward grows
linearly with the time supplied; the distributor caps what is actually paid.

The distributor is an external collaborator reached only through the
RewardDistributor protocol.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from .config import ProtocolConfig
from .core import SYSTEM_WALLET, to_seconds
from .tokens import ExecuteResult, TokenLedger

logger = logging.getLogger(__name__)

REWARD_MEMO = "reward"


@runtime_checkable
class RewardDistributor(Protocol):
    """Pays governance-token rewards on behalf of the protocol."""
    max_reward: int

    def distribute(self, recipient: str, amount: int) -> None:
        ...


def is_reward_eligible(
    supplied_value: int,
    supply_start: Optional[datetime],
    now: datetime,
    config: ProtocolConfig,
) -> bool:
    """
    True when the supplier has held at least the eligibility threshold for a
    full reward interval.
    """
    if supply_start is None or supplied_value < config.reward_eligibility_threshold:
        return False
    return to_seconds(supply_start, now) >= config.reward_interval


def calculate_reward(
    supply_start: Optional[datetime],
    now: datetime,
    config: ProtocolConfig,
    max_reward: int,
) -> int:
    """
    reward_amount per reward_interval supplied, capped at max_reward.

    Example:
        1.5 intervals at 2,000 tokens per interval with a 10,000 cap -> 3,000
    """
    elapsed = to_seconds(supply_start, now)
    nominal = config.reward_amount * elapsed // config.reward_interval
    return min(nominal, max_reward)


class TokenRewardDistributor:
    """
    Pays rewards by issuing a governance token in a TokenLedger.

    The running total is read back from the ledger's transfer log, so it
    follows the ledger through snapshot and restore.

    Example:
        distributor = TokenRewardDistributor(tokens, "GOV", max_reward=10_000 * WAD)
        distributor.distribute("alice", 2_000 * WAD)
    """

    def __init__(self, tokens: TokenLedger, token: str, max_reward: int):
        if max_reward <= 0:
            raise ValueError(f"max_reward must be positive, got {max_reward}")
        self.tokens = tokens
        self.token = token
        self.max_reward = max_reward

    @property
    def total_distributed(self) -> int:
        return sum(
            move.quantity
            for record in self.tokens.transfer_log
            for move in record.moves
            if move.contract_id == REWARD_MEMO and move.token == self.token
        )

    def distribute(self, recipient: str, amount: int) -> None:
        if amount > self.max_reward:
            raise ValueError(f"reward {amount} exceeds cap {self.max_reward}")
        result = self.tokens.transfer(SYSTEM_WALLET, recipient, self.token, amount, contract_id=REWARD_MEMO)
        if result != ExecuteResult.APPLIED:
            raise RuntimeError(f"reward issuance rejected: {self.tokens.last_rejection}")
        logger.info(
            "Reward distributed",
            extra={"event": "rewards.distributed", "recipient": recipient, "amount": amount},
        )
