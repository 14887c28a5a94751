"""Chain anchoring — embeds the event-log digest on Ethereum as tamper-evident proof.

Anchoring sends a zero-value self-transaction whose data field is the
SHA-256 digest of the pool's event log. The transaction's block timestamp
then proves that this exact sequence of stakes, unstakes, compounds and
claims existed no later than that moment. No code executes on chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from eth_account import Account
from web3 import HTTPProvider, Web3

from stakeledger.config import AnchorSettings
from stakeledger.errors import ValidationError

logger = logging.getLogger("stakeledger.crypto.anchor")


@dataclass(frozen=True)
class AnchorRecord:
    """A record of a successful anchor transaction."""
    digest: str
    event_count: int
    tx_hash: str
    block_number: int
    chain_id: int
    timestamp_utc: str
    explorer_url: str


def build_anchor_transaction(
    w3: Web3,
    sender: str,
    digest: str,
    settings: AnchorSettings,
) -> dict:
    """The unsigned self-send transaction carrying digest in its data field."""
    try:
        data = bytes.fromhex(digest)
    except ValueError:
        raise ValidationError(f"Digest is not hex: {digest!r}")
    if len(data) != 32:
        raise ValidationError(f"Digest must be 32 bytes, got {len(data)}")
    return {
        "to": sender,
        "value": 0,
        "gas": settings.gas,
        "gasPrice": w3.to_wei(settings.gas_price_gwei, "gwei"),
        "nonce": w3.eth.get_transaction_count(sender),
        "chainId": settings.chain_id,
        "data": data,
    }


def anchor_digest(
    digest: str,
    event_count: int,
    rpc_url: str,
    private_key: str,
    settings: AnchorSettings = AnchorSettings(),
    timeout: int = 300,
) -> AnchorRecord:
    """Sign, send and await one confirmation of the anchor transaction."""
    w3 = Web3(HTTPProvider(rpc_url))
    acct = Account.from_key(private_key)

    tx = build_anchor_transaction(w3, acct.address, digest, settings)
    signed = acct.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    tx_hex = w3.to_hex(tx_hash)
    logger.info("Sent anchor tx %s, waiting for confirmation", tx_hex)

    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    logger.info("Anchor confirmed in block %d", receipt.blockNumber)

    return AnchorRecord(
        digest=digest,
        event_count=event_count,
        tx_hash=tx_hex,
        block_number=receipt.blockNumber,
        chain_id=settings.chain_id,
        timestamp_utc=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        explorer_url=f"{settings.explorer_tx_url}{tx_hex}",
    )
