"""State store — durable JSON snapshot of the token ledger and reward pool.

The event log is the audit trail; the state store is the fast path for
resuming a session without replaying every event. Writes are atomic: the
snapshot is written to a sibling temp file and moved into place, so a crash
mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

SNAPSHOT_VERSION = 1


class StateStore:
    """JSON snapshot persistence.

    Usage:
        store = StateStore(storage_path=data_dir / "state.json")
        store.save(token.to_dict(), pool.to_dict())
        snapshot = store.load()   # None if nothing saved yet
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def path(self) -> Path:
        return self._storage_path

    def exists(self) -> bool:
        return self._storage_path.exists()

    def save(self, token: dict[str, Any], pool: dict[str, Any]) -> None:
        """Atomically replace the snapshot. Raises OSError on I/O failure."""
        document = {"version": SNAPSHOT_VERSION, "token": token, "pool": pool}
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self._storage_path)

    def load(self) -> Optional[dict[str, Any]]:
        """Return the saved snapshot, or None if there is none.

        Raises ValueError for an unreadable or incompatible snapshot.
        """
        if not self._storage_path.exists():
            return None
        with self._storage_path.open("r", encoding="utf-8") as f:
            try:
                document = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Corrupt state snapshot {self._storage_path}: {e}")
        if document.get("version") != SNAPSHOT_VERSION:
            raise ValueError(
                f"Unsupported snapshot version {document.get('version')!r} "
                f"(expected {SNAPSHOT_VERSION})"
            )
        return document
