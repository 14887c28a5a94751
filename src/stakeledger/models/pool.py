"""Pool models — the shared accrual state and per-participant positions.

All quantities are integers in the value ledger's smallest unit. The
accumulator is additionally scaled by PRECISION.

Invariants:
- PoolState.total_staked == sum(Position.staked_amount for every position)
- PoolState.acc_reward_per_share never decreases
- PoolState.reward_rate > 0
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace


@dataclass
class PoolState:
    """The singleton accrual aggregate of one reward pool.

    reward_rate is the reward budget issued per period (one day) across
    the whole pool. acc_reward_per_share is the cumulative reward earned by
    one unit of stake since deployment, times PRECISION.
    """
    reward_rate: int
    total_staked: int = 0
    acc_reward_per_share: int = 0
    last_accrual_time: int = 0

    def copy(self) -> PoolState:
        return replace(self)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> PoolState:
        return cls(
            reward_rate=int(data["reward_rate"]),
            total_staked=int(data.get("total_staked", 0)),
            acc_reward_per_share=int(data.get("acc_reward_per_share", 0)),
            last_accrual_time=int(data.get("last_accrual_time", 0)),
        )


@dataclass
class Position:
    """One participant's stake and reward bookkeeping.

    Created lazily at zero on first reference and never deleted. An
    all-zero position is indistinguishable from no position.
    """
    staked_amount: int = 0
    reward_debt: int = 0
    pending_reward: int = 0

    def copy(self) -> Position:
        return replace(self)

    def is_empty(self) -> bool:
        return (
            self.staked_amount == 0
            and self.reward_debt == 0
            and self.pending_reward == 0
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Position:
        return cls(
            staked_amount=int(data.get("staked_amount", 0)),
            reward_debt=int(data.get("reward_debt", 0)),
            pending_reward=int(data.get("pending_reward", 0)),
        )
