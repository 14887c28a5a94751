"""Staking service — unified facade over the token ledger and reward pool.

This is the primary interface for programmatic and CLI access. It:
- deploys a token and pool pair from PoolConfig (granting the pool the
  minter role it needs to pay and compound rewards)
- forwards operations to the domain objects and converts domain errors
  into typed ServiceResults
- persists a state snapshot after every successful mutation

The domain layer appends events to the shared event log as part of each
operation, so once an operation returns the audit trail is already
written. A snapshot failure after that point must not roll anything back:
the service marks itself degraded and reports a warning instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from stakeledger.access import MINTER_ROLE
from stakeledger.config import PoolConfig
from stakeledger.crypto.address import normalize_address
from stakeledger.errors import PoolError
from stakeledger.persistence.event_log import EventLog
from stakeledger.persistence.state_store import StateStore
from stakeledger.pool.engine import RewardPool
from stakeledger.token.ledger import TokenLedger
from stakeledger.units import format_units

logger = logging.getLogger("stakeledger.service")


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class StakingService:
    """Facade wiring token, pool, event log and state store.

    Usage:
        service = StakingService.deploy(config, admin=owner, now=t0)
        service.mint(owner, alice, to_units("100"))
        service.approve(alice, to_units("100"))
        service.stake(alice, to_units("100"), now=t0)
        service.claim_rewards(alice, now=t0 + 86_400)
    """

    def __init__(
        self,
        token: TokenLedger,
        pool: RewardPool,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._token = token
        self._pool = pool
        self._state_store = state_store
        self._persistence_degraded = False

    @classmethod
    def deploy(
        cls,
        config: PoolConfig,
        admin: str,
        now: Optional[int] = None,
        reward_rate: Optional[int] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> StakingService:
        """Create a fresh token and pool. admin administers both."""
        event_log = event_log if event_log is not None else EventLog()
        token = TokenLedger(
            config.token_name,
            config.token_symbol,
            admin=admin,
            event_log=event_log,
        )
        pool = RewardPool(
            token,
            reward_rate if reward_rate is not None else config.reward_rate,
            admin=admin,
            now=now,
            period=config.seconds_per_period,
            event_log=event_log,
        )
        token.grant_role(admin, MINTER_ROLE, pool.address)
        service = cls(token, pool, state_store=state_store)
        service._persist_state()
        logger.info("Deployed token %s and pool %s", token.address, pool.address)
        return service

    @classmethod
    def load(
        cls,
        state_store: StateStore,
        event_log: Optional[EventLog] = None,
    ) -> Optional[StakingService]:
        """Restore a service from its snapshot, or None if none exists."""
        snapshot = state_store.load()
        if snapshot is None:
            return None
        event_log = event_log if event_log is not None else EventLog()
        token = TokenLedger.from_dict(snapshot["token"], event_log=event_log)
        pool = RewardPool.from_dict(snapshot["pool"], token, event_log=event_log)
        return cls(token, pool, state_store=state_store)

    @property
    def token(self) -> TokenLedger:
        return self._token

    @property
    def pool(self) -> RewardPool:
        return self._pool

    @property
    def event_log(self) -> EventLog:
        return self._pool.event_log

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    # ------------------------------------------------------------------
    # Token operations
    # ------------------------------------------------------------------

    def mint(self, caller: str, to: str, amount: int) -> ServiceResult:
        return self._run(
            lambda: self._token.mint(caller, to, amount),
            {"to": to, "amount": amount},
        )

    def burn(self, caller: str, account: str, amount: int) -> ServiceResult:
        return self._run(
            lambda: self._token.burn(caller, account, amount),
            {"account": account, "amount": amount},
        )

    def transfer(self, sender: str, to: str, amount: int) -> ServiceResult:
        return self._run(
            lambda: self._token.transfer(sender, to, amount),
            {"to": to, "amount": amount},
        )

    def approve(self, owner: str, amount: int) -> ServiceResult:
        """Allow the pool to pull amount from owner when staking."""
        return self._run(
            lambda: self._token.approve(owner, self._pool.address, amount),
            {"spender": self._pool.address, "amount": amount},
        )

    def grant_token_role(self, caller: str, role: str, account: str) -> ServiceResult:
        return self._run(
            lambda: self._token.grant_role(caller, role, account),
            {"role": role, "account": account},
        )

    # ------------------------------------------------------------------
    # Pool operations
    # ------------------------------------------------------------------

    def set_reward_rate(
        self, caller: str, rate: int, now: Optional[int] = None
    ) -> ServiceResult:
        return self._run(
            lambda: self._pool.set_reward_rate(caller, rate, now=now),
            {"rate": rate},
        )

    def stake(self, account: str, amount: int, now: Optional[int] = None) -> ServiceResult:
        return self._run(
            lambda: self._pool.stake(account, amount, now=now),
            {"account": account, "amount": amount},
        )

    def unstake(self, account: str, amount: int, now: Optional[int] = None) -> ServiceResult:
        return self._run(
            lambda: self._pool.unstake(account, amount, now=now),
            {"account": account, "amount": amount},
        )

    def restake(self, account: str, now: Optional[int] = None) -> ServiceResult:
        return self._run(
            lambda: self._pool.restake(account, now=now),
            {"account": account},
            result_key="amount",
        )

    def claim_rewards(self, account: str, now: Optional[int] = None) -> ServiceResult:
        return self._run(
            lambda: self._pool.claim_rewards(account, now=now),
            {"account": account},
            result_key="amount",
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def position(self, account: str, now: Optional[int] = None) -> ServiceResult:
        try:
            account = normalize_address(account)
        except PoolError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(
            success=True,
            data={
                "account": account,
                "balance": format_units(self._token.balance_of(account)),
                "staked": format_units(self._pool.get_stake_amount(account)),
                "pending_reward": format_units(
                    self._pool.get_accumulated_reward(account, now=now)
                ),
            },
        )

    def status(self) -> dict[str, Any]:
        state = self._pool.snapshot()
        return {
            "token": {
                "name": self._token.name,
                "symbol": self._token.symbol,
                "address": self._token.address,
                "total_supply": format_units(self._token.total_supply()),
            },
            "pool": {
                "address": self._pool.address,
                "token_contract_address": self._pool.token_contract_address(),
                "reward_rate": format_units(state.reward_rate),
                "pool_amount": format_units(state.total_staked),
                "acc_reward_per_share": state.acc_reward_per_share,
                "last_accrual_time": state.last_accrual_time,
                "period_seconds": self._pool.period,
            },
            "events": self.event_log.count,
            "persistence_degraded": self._persistence_degraded,
        }

    def check_invariants(self) -> ServiceResult:
        errors = self._pool.check_invariants()
        return ServiceResult(success=not errors, errors=errors)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: Callable[[], Any],
        data: dict[str, Any],
        result_key: Optional[str] = None,
    ) -> ServiceResult:
        try:
            result = operation()
        except PoolError as e:
            logger.warning("Operation rejected: %s", e)
            return ServiceResult(success=False, errors=[str(e)])
        except OSError as e:
            # The operation rolled back together with its events.
            logger.error("Event log write failed: %s", e)
            return ServiceResult(success=False, errors=[f"Event log failure: {e}"])
        data = dict(data)
        if result_key is not None:
            data[result_key] = result
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _persist_state(self) -> None:
        """Write the snapshot (if a store is wired). Can raise OSError."""
        if self._state_store is None:
            return
        self._state_store.save(self._token.to_dict(), self._pool.to_dict())

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist after the events have been appended.

        Never rolls back: in-memory state agrees with the audit trail, only
        the snapshot is stale.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.error("Snapshot write failed: %s", e)
            return f"Persistence degraded: {e}; state committed in audit trail but snapshot is stale"
