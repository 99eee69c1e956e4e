"""
positions.py - Borrowing Positions

A position is a container of collateral balances and one base-token debt,
owned by a single user. Positions are identified by (owner, position_id)
where ids are assigned per owner, starting at 0, and never reused.

Positions are never deleted: closing or liquidating one moves it to a
terminal status and empties it.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .core import (
    PositionStatus,
    PositionNotFound, PositionNotActive,
)


@dataclass
class Position:
    """
    Attributes:
        owner: Address of the user
        position_id: Index among the owner's positions
        isolated: Isolated positions hold exactly one ISOLATED-eligible asset
        isolated_asset: The asset an isolated position is bound to
        collateral: asset -> amount, in the order assets were first supplied
        debt: Base-token principal plus interest folded in so far
        last_accrual: Last time interest was folded into debt
        status: ACTIVE, CLOSED or LIQUIDATED
        created_at: Logical time of creation
    """
    owner: str
    position_id: int
    isolated: bool = False
    isolated_asset: Optional[str] = None
    collateral: Dict[str, int] = field(default_factory=dict)
    debt: int = 0
    last_accrual: Optional[datetime] = None
    status: PositionStatus = PositionStatus.ACTIVE
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    def collateral_assets(self) -> List[str]:
        """Assets with a non-zero balance, in insertion order."""
        return [asset for asset, amount in self.collateral.items() if amount > 0]

    def collateral_amount(self, asset: str) -> int:
        return self.collateral.get(asset, 0)

    def __repr__(self):
        kind = f"isolated:{self.isolated_asset}" if self.isolated else "cross"
        return (f"Position({self.owner}#{self.position_id}, {kind}, {self.status.value}, "
                f"debt={self.debt}, collateral={self.collateral})")


class PositionBook:
    """
    All positions, grouped by owner.

    Example:
        book = PositionBook()
        pos = book.create("alice", now)
        book.get("alice", pos.position_id) is pos  # True
    """

    def __init__(self):
        self.positions: Dict[str, List[Position]] = {}

    def create(
        self,
        owner: str,
        now: datetime,
        isolated: bool = False,
        isolated_asset: Optional[str] = None,
    ) -> Position:
        owned = self.positions.setdefault(owner, [])
        position = Position(
            owner=owner,
            position_id=len(owned),
            isolated=isolated,
            isolated_asset=isolated_asset if isolated else None,
            last_accrual=now,
            created_at=now,
        )
        owned.append(position)
        return position

    def get(self, owner: str, position_id: int) -> Position:
        """
        Raises:
            PositionNotFound: If the owner has no position with that id
        """
        owned = self.positions.get(owner, [])
        if not 0 <= position_id < len(owned):
            raise PositionNotFound(
                f"{owner} has no position {position_id}",
                owner=owner, position_id=position_id,
            )
        return owned[position_id]

    def require_active(self, owner: str, position_id: int) -> Position:
        """
        Raises:
            PositionNotFound: If the position does not exist
            PositionNotActive: If the position is CLOSED or LIQUIDATED
        """
        position = self.get(owner, position_id)
        if not position.is_active:
            raise PositionNotActive(
                f"position {owner}#{position_id} is {position.status.value}",
                owner=owner, position_id=position_id, status=position.status.value,
            )
        return position

    def count(self, owner: str) -> int:
        return len(self.positions.get(owner, []))

    def list_positions(self, owner: str) -> List[Position]:
        return list(self.positions.get(owner, []))

    def all_positions(self) -> List[Position]:
        return [p for owner in sorted(self.positions) for p in self.positions[owner]]

    def snapshot(self) -> Dict[str, List[Position]]:
        return copy.deepcopy(self.positions)

    def restore(self, snapshot: Dict[str, List[Position]]) -> None:
        self.positions = copy.deepcopy(snapshot)
