"""Core data models for stakeledger."""

from stakeledger.models.pool import PoolState, Position

__all__ = [
    "PoolState",
    "Position",
]
