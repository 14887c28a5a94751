"""Persistence — append-only event log and state snapshots."""

from stakeledger.persistence.event_log import EventKind, EventLog, EventRecord
from stakeledger.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]
