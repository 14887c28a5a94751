"""Reward pool — accrual primitives and the staking engine."""

from stakeledger.pool.accrual import settle_pool, settle_position
from stakeledger.pool.engine import RATE_ADMIN_ROLE, RewardPool

__all__ = ["RATE_ADMIN_ROLE", "RewardPool", "settle_pool", "settle_position"]
