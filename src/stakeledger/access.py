"""Role registry — explicit capability checks by caller identity.

Both the value ledger and the reward pool own one registry each. A role is
a plain string; DEFAULT_ADMIN_ROLE administers every role, including
itself. There is no inheritance-based access control: every guarded
operation receives the caller's address and asks the registry.
"""

from __future__ import annotations

import logging
from typing import Dict, Set

from stakeledger.crypto.address import normalize_address
from stakeledger.errors import AuthorizationError

logger = logging.getLogger("stakeledger.access")

DEFAULT_ADMIN_ROLE = "DEFAULT_ADMIN_ROLE"
MINTER_ROLE = "MINTER_ROLE"
BURNER_ROLE = "BURNER_ROLE"


class RoleRegistry:
    """Tracks which accounts hold which roles.

    Usage:
        roles = RoleRegistry(admin="0x...")
        roles.grant_role(admin, MINTER_ROLE, minter)
        roles.require(MINTER_ROLE, caller)   # raises AuthorizationError
    """

    def __init__(self, admin: str) -> None:
        self._members: Dict[str, Set[str]] = {
            DEFAULT_ADMIN_ROLE: {normalize_address(admin)},
        }

    def has_role(self, role: str, account: str) -> bool:
        return normalize_address(account) in self._members.get(role, set())

    def require(self, role: str, account: str) -> None:
        """Raise AuthorizationError unless account holds role."""
        if not self.has_role(role, account):
            raise AuthorizationError(normalize_address(account), role)

    def grant_role(self, caller: str, role: str, account: str) -> bool:
        """Grant role to account. Only DEFAULT_ADMIN_ROLE holders may grant.

        Returns True if the account did not already hold the role.
        """
        self.require(DEFAULT_ADMIN_ROLE, caller)
        account = normalize_address(account)
        members = self._members.setdefault(role, set())
        if account in members:
            return False
        members.add(account)
        logger.info("Granted %s to %s", role, account)
        return True

    def revoke_role(self, caller: str, role: str, account: str) -> bool:
        """Revoke role from account. Returns True if it was held."""
        self.require(DEFAULT_ADMIN_ROLE, caller)
        account = normalize_address(account)
        members = self._members.get(role, set())
        if account not in members:
            return False
        members.discard(account)
        logger.info("Revoked %s from %s", role, account)
        return True

    def members(self, role: str) -> list[str]:
        return sorted(self._members.get(role, set()))

    def to_dict(self) -> dict:
        return {role: sorted(accounts) for role, accounts in self._members.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "RoleRegistry":
        admins = data.get(DEFAULT_ADMIN_ROLE) or []
        if not admins:
            raise ValueError("Role registry snapshot has no admin")
        registry = cls(admins[0])
        for role, accounts in data.items():
            registry._members[role] = {normalize_address(a) for a in accounts}
        return registry
