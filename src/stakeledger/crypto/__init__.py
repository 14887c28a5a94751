"""Address handling and chain anchoring."""

from stakeledger.crypto.address import (
    NULL_ADDRESS,
    is_null_address,
    new_address,
    normalize_address,
)

__all__ = ["NULL_ADDRESS", "is_null_address", "new_address", "normalize_address"]
