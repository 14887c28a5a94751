"""stakeledger — time-weighted proportional reward distribution over a token ledger."""

__version__ = "0.1.0"
