"""Accrual primitives — the per-share accumulator technique.

settle_pool advances the global reward-per-share accumulator for the time
elapsed since the last accrual. settle_position credits one participant
with what their stake earned between their last snapshot and the current
accumulator. Together they let any participant be settled in O(1),
without ever iterating over the other participants.

Arithmetic is integer-only with floor truncation. Multiplication happens
before division so that truncation is applied once, at the end.

These functions mutate the state objects they are given. Callers that
need a hypothetical answer (views) pass copies.
"""

from __future__ import annotations

from stakeledger.models.pool import PoolState, Position
from stakeledger.units import PRECISION, SECONDS_PER_PERIOD


def accumulator_increment(
    reward_rate: int,
    elapsed: int,
    total_staked: int,
    period: int = SECONDS_PER_PERIOD,
) -> int:
    """Reward per unit staked (scaled by PRECISION) earned over elapsed seconds."""
    if elapsed <= 0 or total_staked <= 0:
        return 0
    return reward_rate * elapsed * PRECISION // (period * total_staked)


def settle_pool(pool: PoolState, now: int, period: int = SECONDS_PER_PERIOD) -> int:
    """Advance the accumulator to now. Returns the increment applied.

    - now <= last_accrual_time: no-op (same-timestamp or out-of-order call).
    - total_staked == 0: the window's reward is forfeited, the accumulator
      is left unchanged, and last_accrual_time still moves to now.
    """
    if now <= pool.last_accrual_time:
        return 0
    elapsed = now - pool.last_accrual_time
    increment = accumulator_increment(
        pool.reward_rate, elapsed, pool.total_staked, period
    )
    pool.acc_reward_per_share += increment
    pool.last_accrual_time = now
    return increment


def owed_since_snapshot(position: Position, acc_reward_per_share: int) -> int:
    """Reward the position's current stake earned since its reward_debt snapshot."""
    return (
        position.staked_amount
        * (acc_reward_per_share - position.reward_debt)
        // PRECISION
    )


def settle_position(
    pool: PoolState,
    position: Position,
    now: int,
    period: int = SECONDS_PER_PERIOD,
) -> int:
    """Settle the pool, then credit the position. Returns the amount credited.

    Must run before any change to position.staked_amount so that the old
    stake is credited for the time it was in effect and the new stake only
    earns from now on.
    """
    settle_pool(pool, now, period)
    owed = owed_since_snapshot(position, pool.acc_reward_per_share)
    position.pending_reward += owed
    position.reward_debt = pool.acc_reward_per_share
    return owed
