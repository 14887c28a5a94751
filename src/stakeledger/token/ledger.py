"""Value ledger — an in-process fungible token with role-gated issuance.

Balances are integers in the smallest unit (18 decimals). The ledger
offers the standard transfer / approve / allowance / transfer_from surface
plus mint (MINTER_ROLE) and burn (BURNER_ROLE). The deployer holds
DEFAULT_ADMIN_ROLE and is the only account that can grant roles.

Every guarded or balance-moving call takes the acting account explicitly
as its first argument. All checks run before any balance changes, and each
change runs inside atomic(): balances, allowances and supply are journaled
so that if the event cannot be recorded, the change is undone.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from stakeledger.access import (
    BURNER_ROLE,
    DEFAULT_ADMIN_ROLE,
    MINTER_ROLE,
    RoleRegistry,
)
from stakeledger.crypto.address import NULL_ADDRESS, new_address, normalize_address
from stakeledger.errors import ValidationError
from stakeledger.persistence.event_log import EventKind, EventLog
from stakeledger.units import DECIMALS

logger = logging.getLogger("stakeledger.token.ledger")

_ABSENT = object()


class TokenLedger:
    """Fungible token ledger.

    Usage:
        token = TokenLedger("LabToken", "LABT", admin=owner)
        token.grant_role(owner, MINTER_ROLE, minter)
        token.mint(minter, alice, to_units("100"))
        token.approve(alice, pool.address, to_units("100"))
    """

    def __init__(
        self,
        name: str,
        symbol: str,
        admin: str,
        address: Optional[str] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self.name = name
        self.symbol = symbol
        self.decimals = DECIMALS
        self.address = normalize_address(address) if address else new_address()
        self.roles = RoleRegistry(admin)
        self.event_log = event_log if event_log is not None else EventLog()
        self._balances: Dict[str, int] = defaultdict(int)
        self._allowances: Dict[str, Dict[str, int]] = defaultdict(dict)
        self._total_supply = 0
        self._journal: Optional[List[Tuple[Any, str, Any]]] = None

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, account: str) -> int:
        return self._balances.get(normalize_address(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        owner = normalize_address(owner)
        return self._allowances.get(owner, {}).get(normalize_address(spender), 0)

    def has_role(self, role: str, account: str) -> bool:
        return self.roles.has_role(role, account)

    # ------------------------------------------------------------------
    # Role administration
    # ------------------------------------------------------------------

    def grant_role(self, caller: str, role: str, account: str) -> None:
        self.roles.require(DEFAULT_ADMIN_ROLE, caller)
        if self.roles.has_role(role, account):
            return
        self.event_log.emit(
            EventKind.ROLE_GRANTED,
            normalize_address(caller),
            {"role": role, "account": normalize_address(account)},
        )
        self.roles.grant_role(caller, role, account)

    def revoke_role(self, caller: str, role: str, account: str) -> None:
        self.roles.require(DEFAULT_ADMIN_ROLE, caller)
        if not self.roles.has_role(role, account):
            return
        self.event_log.emit(
            EventKind.ROLE_REVOKED,
            normalize_address(caller),
            {"role": role, "account": normalize_address(account)},
        )
        self.roles.revoke_role(caller, role, account)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def approve(self, owner: str, spender: str, amount: int) -> None:
        owner = normalize_address(owner)
        spender = normalize_address(spender)
        if owner == NULL_ADDRESS or spender == NULL_ADDRESS:
            raise ValidationError("approve with the zero address")
        if amount < 0:
            raise ValidationError("allowance must not be negative")
        with self.atomic():
            self.event_log.emit(
                EventKind.APPROVAL,
                owner,
                {"owner": owner, "spender": spender, "amount": amount},
            )
            self._set(self._allowances[owner], spender, amount)

    def transfer(self, sender: str, to: str, amount: int) -> None:
        sender = normalize_address(sender)
        to = normalize_address(to)
        self._check_move(sender, to, amount)
        with self.atomic():
            self._move(sender, to, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        """Move amount from owner to to, spending spender's allowance."""
        spender = normalize_address(spender)
        owner = normalize_address(owner)
        to = normalize_address(to)
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise ValidationError(
                f"insufficient allowance: {spender} may spend {allowed} of "
                f"{owner}, needs {amount}"
            )
        self._check_move(owner, to, amount)
        with self.atomic():
            self._move(owner, to, amount)
            self._set(self._allowances[owner], spender, allowed - amount)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def mint(self, caller: str, to: str, amount: int) -> None:
        """Create amount new units in to's balance. Requires MINTER_ROLE."""
        self.roles.require(MINTER_ROLE, caller)
        to = normalize_address(to)
        if to == NULL_ADDRESS:
            raise ValidationError("mint to the zero address")
        if amount <= 0:
            raise ValidationError("mint amount must be positive")
        with self.atomic():
            self.event_log.emit(
                EventKind.TRANSFER,
                normalize_address(caller),
                {"from": NULL_ADDRESS, "to": to, "amount": amount},
            )
            self._set(self._balances, to, self._balances.get(to, 0) + amount)
            self._set_supply(self._total_supply + amount)
        logger.debug("Minted %d to %s", amount, to)

    def burn(self, caller: str, account: str, amount: int) -> None:
        """Destroy amount units from account. Requires BURNER_ROLE."""
        self.roles.require(BURNER_ROLE, caller)
        account = normalize_address(account)
        if account == NULL_ADDRESS:
            raise ValidationError("burn from the zero address")
        if amount <= 0:
            raise ValidationError("burn amount must be positive")
        if self._balances.get(account, 0) < amount:
            raise ValidationError("burn amount exceeds balance")
        with self.atomic():
            self.event_log.emit(
                EventKind.TRANSFER,
                normalize_address(caller),
                {"from": account, "to": NULL_ADDRESS, "amount": amount},
            )
            self._set(self._balances, account, self._balances[account] - amount)
            self._set_supply(self._total_supply - amount)
        logger.debug("Burned %d from %s", amount, account)

    # ------------------------------------------------------------------
    # Atomicity
    # ------------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Apply every balance change and event in the block, or none.

        Opens a transaction on the event log; if the block raises or the
        events cannot be written, journaled changes are reverted. Nested
        blocks join the outermost one and on failure revert only their own
        changes.
        """
        outermost = self._journal is None
        if outermost:
            self._journal = []
        mark = len(self._journal)
        completed = False
        try:
            with self.event_log.transaction():
                yield
            completed = True
        finally:
            if not completed:
                self._undo(mark)
            if outermost:
                self._journal = None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "address": self.address,
            "roles": self.roles.to_dict(),
            "balances": {a: b for a, b in self._balances.items() if b},
            "allowances": {
                owner: dict(spenders)
                for owner, spenders in self._allowances.items()
                if spenders
            },
            "total_supply": self._total_supply,
        }

    @classmethod
    def from_dict(cls, data: dict, event_log: Optional[EventLog] = None) -> "TokenLedger":
        roles = RoleRegistry.from_dict(data["roles"])
        admin = roles.members(DEFAULT_ADMIN_ROLE)[0]
        token = cls(
            data["name"],
            data["symbol"],
            admin=admin,
            address=data["address"],
            event_log=event_log,
        )
        token.roles = roles
        for account, balance in data.get("balances", {}).items():
            token._balances[normalize_address(account)] = int(balance)
        for owner, spenders in data.get("allowances", {}).items():
            token._allowances[normalize_address(owner)] = {
                normalize_address(s): int(v) for s, v in spenders.items()
            }
        token._total_supply = int(data.get("total_supply", 0))
        if token._total_supply != sum(token._balances.values()):
            raise ValueError("Token snapshot total_supply does not match balances")
        return token

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_move(self, sender: str, to: str, amount: int) -> None:
        if sender == NULL_ADDRESS:
            raise ValidationError("transfer from the zero address")
        if to == NULL_ADDRESS:
            raise ValidationError("transfer to the zero address")
        if amount <= 0:
            raise ValidationError("transfer amount must be positive")
        if self._balances.get(sender, 0) < amount:
            raise ValidationError("transfer amount exceeds balance")

    def _move(self, sender: str, to: str, amount: int) -> None:
        """Caller has run _check_move and holds atomic()."""
        self.event_log.emit(
            EventKind.TRANSFER,
            sender,
            {"from": sender, "to": to, "amount": amount},
        )
        self._set(self._balances, sender, self._balances[sender] - amount)
        self._set(self._balances, to, self._balances.get(to, 0) + amount)

    def _set(self, table: Dict[str, int], key: str, value: int) -> None:
        self._journal.append((table, key, table.get(key, _ABSENT)))
        table[key] = value

    def _set_supply(self, value: int) -> None:
        self._journal.append((None, "total_supply", self._total_supply))
        self._total_supply = value

    def _undo(self, mark: int) -> None:
        for table, key, previous in reversed(self._journal[mark:]):
            if table is None:
                self._total_supply = previous
            elif previous is _ABSENT:
                table.pop(key, None)
            else:
                table[key] = previous
        del self._journal[mark:]
