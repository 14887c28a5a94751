"""Reward pool engine — stake, unstake, compound and claim against one accumulator.

Participants deposit the value ledger's token into the pool and accrue a
share of a per-day reward budget proportional to their stake and the time
they held it. The engine owns the pool aggregate and the position mapping;
its only side effects are value-ledger calls (transfer_from, transfer,
mint) and one appended event per successful operation.

Every mutating operation follows the same shape:
    1. validate input (nothing has changed yet)
    2. settle the pool and the caller's position on copies
    3. validate against the settled copies (nothing has changed yet)
    4. apply the effect to the copies and install them (accounting committed)
    5. call the value ledger and append the event in one ledger transaction;
       if either fails, reinstall the originals and re-raise

Step 4 before step 5 means a value ledger that calls back into the pool
mid-transfer sees fully updated, consistent state. Step 5 is atomic across
ledger and pool as long as both write to the same event log (the default).

Usage:
    pool = RewardPool(token, to_units("100"), admin=owner, now=t0)
    token.grant_role(owner, MINTER_ROLE, pool.address)
    token.approve(alice, pool.address, to_units("100"))
    pool.stake(alice, to_units("100"), now=t0)
    pool.claim_rewards(alice, now=t0 + 86_400)   # mints 100 tokens to alice
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from stakeledger.access import DEFAULT_ADMIN_ROLE, MINTER_ROLE, RoleRegistry
from stakeledger.crypto.address import is_null_address, new_address, normalize_address
from stakeledger.errors import AuthorizationError, StateError, ValidationError
from stakeledger.models.pool import PoolState, Position
from stakeledger.persistence.event_log import EventKind, EventLog
from stakeledger.pool.accrual import settle_pool, settle_position
from stakeledger.units import SECONDS_PER_PERIOD, format_units

logger = logging.getLogger("stakeledger.pool.engine")

RATE_ADMIN_ROLE = DEFAULT_ADMIN_ROLE


class RewardPool:
    """Time-weighted proportional reward pool over a value ledger."""

    def __init__(
        self,
        token: Any,
        initial_rate: int,
        admin: str,
        address: Optional[str] = None,
        now: Optional[int] = None,
        period: int = SECONDS_PER_PERIOD,
        event_log: Optional[EventLog] = None,
    ) -> None:
        if is_null_address(token.address):
            raise ValidationError("address zero is not a valid contract address")
        if initial_rate <= 0:
            raise ValidationError("reward rate must be greater than 0")
        if period <= 0:
            raise ValidationError("reward period must be positive")

        self._token = token
        self.address = normalize_address(address) if address else new_address()
        self.roles = RoleRegistry(admin)
        self._period = period
        self._pool = PoolState(
            reward_rate=initial_rate,
            last_accrual_time=self._clock(now),
        )
        self._positions: Dict[str, Position] = {}
        self._journal: List[Tuple[PoolState, str, Optional[Position]]] = []
        if event_log is None:
            event_log = getattr(token, "event_log", None)
        self.event_log = event_log if event_log is not None else EventLog()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def token_contract_address(self) -> str:
        return self._token.address

    def reward_rate(self) -> int:
        return self._pool.reward_rate

    def pool_amount(self) -> int:
        return self._pool.total_staked

    def get_stake_amount(self, account: str) -> int:
        return self._positions.get(normalize_address(account), Position()).staked_amount

    def get_accumulated_reward(self, account: str, now: Optional[int] = None) -> int:
        """Pending reward as if the account were settled at now. Mutates nothing."""
        _, position = self._staged(normalize_address(account), self._clock(now))
        return position.pending_reward

    def get_position(self, account: str) -> Position:
        """Copy of the stored (unsettled) position."""
        return self._positions.get(normalize_address(account), Position()).copy()

    def snapshot(self) -> PoolState:
        """Copy of the pool aggregate."""
        return self._pool.copy()

    @property
    def period(self) -> int:
        return self._period

    @property
    def token(self) -> Any:
        return self._token

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def settle_pool(self, now: Optional[int] = None) -> int:
        """Advance the global accumulator to now. Returns the increment."""
        increment = settle_pool(self._pool, self._clock(now), self._period)
        if increment:
            logger.debug(
                "Accumulator advanced by %d to %d",
                increment,
                self._pool.acc_reward_per_share,
            )
        return increment

    def settle_position(self, account: str, now: Optional[int] = None) -> int:
        """Settle account against the accumulator. Returns the amount credited."""
        account = normalize_address(account)
        position = self._positions.setdefault(account, Position())
        return settle_position(self._pool, position, self._clock(now), self._period)

    # ------------------------------------------------------------------
    # Rate administration
    # ------------------------------------------------------------------

    def set_reward_rate(self, caller: str, rate: int, now: Optional[int] = None) -> int:
        """Replace the per-period reward budget.

        Time already elapsed is settled at the old rate first, so a rate
        change never applies retroactively.
        """
        self.roles.require(RATE_ADMIN_ROLE, caller)
        if rate <= 0:
            raise ValidationError("reward rate must be greater than 0")
        now = self._clock(now)
        pool = self._pool.copy()
        settle_pool(pool, now, self._period)
        previous = pool.reward_rate
        pool.reward_rate = rate
        self.event_log.emit(
            EventKind.REWARD_RATE_SET,
            normalize_address(caller),
            {"rate": rate},
            timestamp=now,
        )
        self._pool = pool
        logger.info(
            "Reward rate changed from %s to %s per period",
            format_units(previous),
            format_units(rate),
        )
        return rate

    def grant_role(self, caller: str, role: str, account: str) -> None:
        self.roles.require(DEFAULT_ADMIN_ROLE, caller)
        if self.roles.has_role(role, account):
            return
        self.event_log.emit(
            EventKind.ROLE_GRANTED,
            normalize_address(caller),
            {"role": role, "account": normalize_address(account), "pool": self.address},
        )
        self.roles.grant_role(caller, role, account)

    def revoke_role(self, caller: str, role: str, account: str) -> None:
        self.roles.require(DEFAULT_ADMIN_ROLE, caller)
        if not self.roles.has_role(role, account):
            return
        self.event_log.emit(
            EventKind.ROLE_REVOKED,
            normalize_address(caller),
            {"role": role, "account": normalize_address(account), "pool": self.address},
        )
        self.roles.revoke_role(caller, role, account)

    # ------------------------------------------------------------------
    # Participant operations
    # ------------------------------------------------------------------

    def stake(self, account: str, amount: int, now: Optional[int] = None) -> int:
        """Deposit amount from account's ledger balance into the pool."""
        account = normalize_address(account)
        if amount <= 0:
            raise ValidationError("staking amount must be positive")
        owned = self._token.balance_of(account)
        if owned < amount:
            raise ValidationError(
                f"insufficient owned balance: {account} owns "
                f"{format_units(owned)}, cannot stake {format_units(amount)}"
            )
        allowed = self._token.allowance(account, self.address)
        if allowed < amount:
            raise ValidationError(
                f"insufficient allowance: pool may spend {format_units(allowed)} "
                f"of {account}, needs {format_units(amount)}"
            )
        now = self._clock(now)

        pool, position = self._staged(account, now)
        position.staked_amount += amount
        pool.total_staked += amount
        return self._commit_and_call(
            EventKind.STAKE,
            account,
            amount,
            now,
            pool,
            position,
            lambda: self._token.transfer_from(self.address, account, self.address, amount),
        )

    def unstake(self, account: str, amount: int, now: Optional[int] = None) -> int:
        """Withdraw amount of principal back to account. Pending reward stays."""
        account = normalize_address(account)
        if amount <= 0:
            raise ValidationError("unstaking amount must be positive")
        staked = self.get_stake_amount(account)
        if amount > staked:
            raise ValidationError(
                f"position underfunded: {account} has {format_units(staked)} "
                f"staked, cannot unstake {format_units(amount)}"
            )
        now = self._clock(now)

        pool, position = self._staged(account, now)
        position.staked_amount -= amount
        pool.total_staked -= amount
        return self._commit_and_call(
            EventKind.UNSTAKE,
            account,
            amount,
            now,
            pool,
            position,
            lambda: self._token.transfer(self.address, account, amount),
        )

    def restake(self, account: str, now: Optional[int] = None) -> int:
        """Compound all pending reward into staked principal.

        The reward is minted into pool custody; the account's ledger
        balance does not change.
        """
        account = normalize_address(account)
        now = self._clock(now)

        pool, position = self._staged(account, now)
        amount = position.pending_reward
        if amount <= 0:
            raise StateError("nothing to compound: pending reward is zero")
        self._require_minter()
        position.pending_reward = 0
        position.staked_amount += amount
        pool.total_staked += amount
        return self._commit_and_call(
            EventKind.RESTAKE,
            account,
            amount,
            now,
            pool,
            position,
            lambda: self._token.mint(self.address, self.address, amount),
        )

    def claim_rewards(self, account: str, now: Optional[int] = None) -> int:
        """Mint all pending reward to account. Stake is untouched."""
        account = normalize_address(account)
        now = self._clock(now)

        pool, position = self._staged(account, now)
        amount = position.pending_reward
        if amount <= 0:
            raise StateError("nothing to claim: pending reward is zero")
        self._require_minter()
        position.pending_reward = 0
        return self._commit_and_call(
            EventKind.CLAIM_REWARDS,
            account,
            amount,
            now,
            pool,
            position,
            lambda: self._token.mint(self.address, account, amount),
        )

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def check_invariants(self) -> list[str]:
        """Return a list of violated invariants (empty when healthy)."""
        errors: list[str] = []
        position_sum = sum(p.staked_amount for p in self._positions.values())
        if position_sum != self._pool.total_staked:
            errors.append(
                f"total_staked {self._pool.total_staked} != sum of positions {position_sum}"
            )
        if self._pool.reward_rate <= 0:
            errors.append(f"reward_rate must be > 0, got {self._pool.reward_rate}")
        for account, position in self._positions.items():
            if position.staked_amount < 0 or position.pending_reward < 0:
                errors.append(f"negative position for {account}")
            if position.reward_debt > self._pool.acc_reward_per_share:
                errors.append(f"reward_debt ahead of accumulator for {account}")
        custody = self._token.balance_of(self.address)
        if custody < self._pool.total_staked:
            errors.append(
                f"pool custody {custody} does not cover total_staked "
                f"{self._pool.total_staked}"
            )
        return errors

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "token_address": self._token.address,
            "period": self._period,
            "roles": self.roles.to_dict(),
            "pool": self._pool.to_dict(),
            "positions": {
                account: position.to_dict()
                for account, position in self._positions.items()
                if not position.is_empty()
            },
        }

    @classmethod
    def from_dict(
        cls,
        data: dict,
        token: Any,
        event_log: Optional[EventLog] = None,
    ) -> "RewardPool":
        if normalize_address(data["token_address"]) != normalize_address(token.address):
            raise ValueError(
                f"Pool snapshot is bound to token {data['token_address']}, "
                f"not {token.address}"
            )
        roles = RoleRegistry.from_dict(data["roles"])
        state = PoolState.from_dict(data["pool"])
        pool = cls(
            token,
            state.reward_rate,
            admin=roles.members(DEFAULT_ADMIN_ROLE)[0],
            address=data["address"],
            now=state.last_accrual_time,
            period=int(data.get("period", SECONDS_PER_PERIOD)),
            event_log=event_log,
        )
        pool.roles = roles
        pool._pool = state
        pool._positions = {
            normalize_address(account): Position.from_dict(p)
            for account, p in data.get("positions", {}).items()
        }
        return pool

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _clock(now: Optional[int]) -> int:
        return int(time.time()) if now is None else int(now)

    def _staged(self, account: str, now: int) -> Tuple[PoolState, Position]:
        """Settled copies of the pool and account's position."""
        pool = self._pool.copy()
        position = self._positions.get(account, Position()).copy()
        settle_position(pool, position, now, self._period)
        return pool, position

    def _require_minter(self) -> None:
        if not self._token.has_role(MINTER_ROLE, self.address):
            raise AuthorizationError(self.address, MINTER_ROLE)

    def _commit_and_call(
        self,
        kind: EventKind,
        account: str,
        amount: int,
        now: int,
        pool: PoolState,
        position: Position,
        call: Callable[[], None],
    ) -> int:
        """Install the staged state, make the value-ledger call, record the event.

        The ledger call and the event run in one ledger transaction. If
        either raises, the ledger changes and events are discarded and the
        pool and position are reinstalled before the error propagates.
        Operations that re-enter the pool during the ledger call share the
        outer transaction and are reverted with it.
        """
        mark = len(self._journal)
        self._journal.append((self._pool, account, self._positions.get(account)))
        self._pool = pool
        self._positions[account] = position
        try:
            with self._token.atomic(), self.event_log.transaction():
                call()
                self.event_log.emit(
                    kind,
                    account,
                    {"account": account, "amount": amount},
                    timestamp=now,
                )
        except Exception:
            self._rollback(mark)
            raise
        if mark == 0:
            self._journal.clear()
        logger.info(
            "%s %s %s (pool now %s)",
            kind.value,
            account,
            format_units(amount),
            format_units(self._pool.total_staked),
        )
        return amount

    def _rollback(self, mark: int) -> None:
        for pool, account, position in reversed(self._journal[mark:]):
            self._pool = pool
            if position is None:
                self._positions.pop(account, None)
            else:
                self._positions[account] = position
        del self._journal[mark:]
