"""Value ledger — the fungible token the pool stakes and rewards in."""

from stakeledger.token.ledger import TokenLedger

__all__ = ["TokenLedger"]
