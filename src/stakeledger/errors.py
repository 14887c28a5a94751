"""Error taxonomy shared by the value ledger and the reward pool.

Every error is raised before any state mutation, so a caller that catches
one can assume nothing changed. Nothing is retried internally.

- ValidationError: bad input (non-positive amounts, insufficient balance or
  allowance, null addresses, non-positive reward rate, over-unstaking).
- AuthorizationError: the caller lacks a required role.
- StateError: the operation is well-formed but the position has nothing to
  act on (claim or compound with zero pending reward).
"""

from __future__ import annotations


class PoolError(Exception):
    """Base class for all stakeledger domain errors."""


class ValidationError(PoolError, ValueError):
    """Input failed validation."""


class AuthorizationError(PoolError, PermissionError):
    """Caller is missing a required role."""

    def __init__(self, account: str, role: str) -> None:
        self.account = account
        self.role = role
        super().__init__(f"account {account} is missing role {role}")


class StateError(PoolError, RuntimeError):
    """Operation is not possible in the current position state."""
