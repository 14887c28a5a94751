"""Account addresses — normalisation, the null address, fresh identities.

Participants, the token and the pool are all identified by 20-byte
Ethereum-style addresses. Every address entering the ledger is normalised
to its EIP-55 checksum form so that two spellings of the same account can
never hold two positions.
"""

from __future__ import annotations

from eth_account import Account
from web3 import Web3

from stakeledger.errors import ValidationError

NULL_ADDRESS = "0x" + "0" * 40


def normalize_address(address: str) -> str:
    """Return the checksum form of an address.

    Raises ValidationError if the value is not a 20-byte hex address.
    """
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValidationError(f"Not a valid address: {address!r}")
    return Web3.to_checksum_address(address)


def is_null_address(address: str) -> bool:
    return normalize_address(address) == NULL_ADDRESS


def new_address() -> str:
    """Generate a fresh random address (used for token and pool custody)."""
    return Account.create().address
