"""
access.py - Role-Based Authorization for Administrative Operations

Every privileged call receives the caller's address explicitly and checks it
against the role table held here. There is no ambient "current sender".

Roles:
- ADMIN:   grants and revokes roles
- MANAGER: lists assets, configures oracles, tiers and protocol parameters,
           controls circuit breakers
- PAUSER:  halts and resumes the ledger
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Set

from .core import Unauthorized

logger = logging.getLogger(__name__)


class Role(Enum):
    """Privileged roles recognised by the ledger."""
    ADMIN = "admin"
    MANAGER = "manager"
    PAUSER = "pauser"


@dataclass
class AccessControl:
    """
    Role table: role -> set of addresses.

    Example:
        acl = AccessControl(admin="gov")
        acl.grant_role("gov", Role.MANAGER, "risk_team")
        acl.require_role(Role.MANAGER, "risk_team")  # passes
        acl.require_role(Role.MANAGER, "mallory")    # raises Unauthorized
    """

    admin: str = ""
    roles: Dict[Role, Set[str]] = field(default_factory=dict)
    role_changes: List[Dict] = field(default_factory=list)

    def __post_init__(self) -> None:
        for role in Role:
            self.roles.setdefault(role, set())
        if self.admin:
            self.roles[Role.ADMIN].add(self.admin)

    def has_role(self, role: Role, address: str) -> bool:
        """Check whether address currently holds role."""
        return address in self.roles[role]

    def require_role(self, role: Role, caller: str) -> None:
        """
        Raises:
            Unauthorized: If caller does not hold role
        """
        if not self.has_role(role, caller):
            raise Unauthorized(
                f"{caller} lacks role {role.value}",
                caller=caller,
                role=role.value,
            )

    def grant_role(self, caller: str, role: Role, address: str) -> None:
        """Grant role to address. Only ADMIN may call."""
        self.require_role(Role.ADMIN, caller)
        self.roles[role].add(address)
        self.role_changes.append({"action": "grant", "role": role.value, "address": address, "admin": caller})
        logger.info(
            "Role granted",
            extra={"event": "access.role_granted", "role": role.value, "address": address},
        )

    def revoke_role(self, caller: str, role: Role, address: str) -> None:
        """Revoke role from address. Only ADMIN may call."""
        self.require_role(Role.ADMIN, caller)
        self.roles[role].discard(address)
        self.role_changes.append({"action": "revoke", "role": role.value, "address": address, "admin": caller})
        logger.info(
            "Role revoked",
            extra={"event": "access.role_revoked", "role": role.value, "address": address},
        )
