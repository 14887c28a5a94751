"""Append-only event log — the canonical record of every ledger and pool event.

Every successful state change on the value ledger or the reward pool
produces exactly one event record appended here. Events are immutable once
written. The log serves as:
1. The observable event stream (Stake, Unstake, Restake, ClaimRewards, ...).
2. The audit trail for third-party verification.
3. The input to the digest that can be anchored on chain.

Events emitted inside transaction() are buffered and written together when
the outermost transaction exits cleanly. If the block raises, or the write
itself fails, none of them are recorded.
"""

from __future__ import annotations

import enum
import hashlib
import json
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional


class EventKind(str, enum.Enum):
    """Classification of ledger and pool events."""
    # Value ledger events
    TRANSFER = "transfer"
    APPROVAL = "approval"
    ROLE_GRANTED = "role_granted"
    ROLE_REVOKED = "role_revoked"
    # Reward pool events
    REWARD_RATE_SET = "reward_rate_set"
    STAKE = "stake"
    UNSTAKE = "unstake"
    RESTAKE = "restake"
    CLAIM_REWARDS = "claim_rewards"


def _hash_fields(fields: dict[str, Any]) -> str:
    canonical = json.dumps(fields, sort_keys=True, ensure_ascii=False)
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event, hashed over its other fields."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @classmethod
    def create(
        cls,
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp: Optional[int] = None,
    ) -> EventRecord:
        """Build a record. timestamp is Unix seconds; defaults to wall-clock now."""
        when = (
            datetime.fromtimestamp(timestamp, timezone.utc)
            if timestamp is not None
            else datetime.now(timezone.utc)
        )
        fields = {
            "event_id": event_id,
            "event_kind": event_kind.value,
            "timestamp_utc": when.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "actor_id": actor_id,
            "payload": payload,
        }
        return cls(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=fields["timestamp_utc"],
            actor_id=actor_id,
            payload=payload,
            event_hash=_hash_fields(fields),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventRecord:
        """Rebuild a stored record. Raises ValueError if its hash does not verify."""
        fields = {k: v for k, v in data.items() if k != "event_hash"}
        expected = _hash_fields(fields)
        if data["event_hash"] != expected:
            raise ValueError(
                f"event {data['event_id']} stored hash {data['event_hash']} "
                f"!= computed {expected}"
            )
        return cls(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            event_hash=data["event_hash"],
        )


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Usage:
        log = EventLog(storage_path=data_dir / "events.jsonl")
        with log.transaction():
            log.emit(EventKind.TRANSFER, sender, {...})
            log.emit(EventKind.STAKE, account, {...}, timestamp=now)
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path
        self._pending: Optional[list[EventRecord]] = None

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Record one event, or buffer it inside a transaction.

        Raises ValueError on a duplicate event_id (replay protection).
        """
        if event.event_id in self._event_ids or any(
            p.event_id == event.event_id for p in self._pending or ()
        ):
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        if self._pending is not None:
            self._pending.append(event)
        else:
            self._commit([event])

    def emit(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp: Optional[int] = None,
    ) -> EventRecord:
        """Create and append the next event. timestamp is the ledger clock."""
        sequence = len(self._events) + len(self._pending or ()) + 1
        event = EventRecord.create(
            f"evt_{sequence:08d}", kind, actor_id, payload, timestamp=timestamp
        )
        self.append(event)
        return event

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Record every event emitted in the block, or none of them.

        Nested transactions join the outermost one; a failing inner block
        discards only its own events.
        """
        outermost = self._pending is None
        if outermost:
            self._pending = []
        mark = len(self._pending)
        completed = False
        try:
            yield
            completed = True
        finally:
            if not completed:
                del self._pending[mark:]
            if outermost:
                pending, self._pending = self._pending, None
        if outermost and pending:
            self._commit(pending)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Recorded events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def digest(self) -> str:
        """SHA-256 over the ordered event hashes (hex, no prefix)."""
        h = hashlib.sha256()
        for event in self._events:
            h.update(event.event_hash.encode("utf-8"))
        return h.hexdigest()

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _commit(self, events: list[EventRecord]) -> None:
        # File first: a failed write leaves memory untouched.
        if self._storage_path:
            self._append_to_file(events)
        self._events.extend(events)
        self._event_ids.update(e.event_id for e in events)

    def _append_to_file(self, events: list[EventRecord]) -> None:
        """Append events to the JSONL file in a single write."""
        lines = "".join(
            json.dumps(e.to_dict(), sort_keys=True, ensure_ascii=False) + "\n"
            for e in events
        )
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(lines)

    def _load_from_file(self, path: Path) -> None:
        """Load and verify a JSONL log. Fails closed on tampering or replays."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                if not line.strip():
                    continue
                data = json.loads(line)
                if data["event_id"] in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): "
                        f"{data['event_id']}"
                    )
                try:
                    event = EventRecord.from_dict(data)
                except ValueError as e:
                    raise ValueError(f"Integrity check failed (line {line_num}): {e}")
                self._events.append(event)
                self._event_ids.add(event.event_id)
