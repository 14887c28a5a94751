#!/usr/bin/env python3
"""stakeledger invariant checks against config and a saved pool snapshot.

Usage:
    python3 tools/check_invariants.py [DATA_DIR]

Checks config/pool_params.json, then (if DATA_DIR/state.json exists)
replays the pool's own invariant checks and cross-checks the snapshot's
token and pool sections against each other.
"""

import json
import sys
from pathlib import Path

from stakeledger.config import PoolConfig
from stakeledger.persistence.event_log import EventLog
from stakeledger.persistence.state_store import StateStore
from stakeledger.service import StakingService

ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
PARAMS_PATH = CONFIG_DIR / "pool_params.json"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_params(errors: list[str]) -> None:
    params = load_json(PARAMS_PATH)
    pool = params.get("pool", {})
    if pool.get("seconds_per_period", 0) <= 0:
        errors.append("pool.seconds_per_period must be > 0")
    try:
        PoolConfig.from_dict(params)
    except ValueError as e:
        errors.append(f"pool_params.json rejected: {e}")
    anchor = params.get("anchor", {})
    if anchor.get("gas", 0) <= 0:
        errors.append("anchor.gas must be > 0")


def check_snapshot(data_dir: Path, errors: list[str]) -> None:
    store = StateStore(storage_path=data_dir / "state.json")
    if not store.exists():
        return
    events_path = data_dir / "events.jsonl"
    event_log = EventLog(storage_path=events_path) if events_path.exists() else None
    service = StakingService.load(store, event_log=event_log)
    if service is None:
        return
    errors.extend(service.pool.check_invariants())
    supply = service.token.total_supply()
    if supply < service.pool.pool_amount():
        errors.append(f"token supply {supply} is below pool amount {service.pool.pool_amount()}")


def check(data_dir: Path = ROOT / "data") -> int:
    errors: list[str] = []
    check_params(errors)
    check_snapshot(data_dir, errors)

    if errors:
        for error in errors:
            print(f"VIOLATION: {error}")
        return 1
    print("All invariants hold")
    return 0


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else ROOT / "data"
    raise SystemExit(check(target))
