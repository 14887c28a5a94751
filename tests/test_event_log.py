"""Tests for the append-only event log — proves integrity and replay protection."""

import json

import pytest

from stakeledger.persistence.event_log import EventKind, EventLog, EventRecord

ACTOR = "0x" + "44" * 20


def _now() -> int:
    return 1_700_000_000


class TestEmit:
    def test_sequential_ids(self) -> None:
        log = EventLog()
        first = log.emit(EventKind.STAKE, ACTOR, {"amount": 1}, timestamp=_now())
        second = log.emit(EventKind.UNSTAKE, ACTOR, {"amount": 1}, timestamp=_now())
        assert first.event_id == "evt_00000001"
        assert second.event_id == "evt_00000002"
        assert log.count == 2
        assert log.last_event == second

    def test_timestamp_from_ledger_clock(self) -> None:
        log = EventLog()
        event = log.emit(EventKind.STAKE, ACTOR, {}, timestamp=_now())
        assert event.timestamp_utc == "2023-11-14T22:13:20Z"

    def test_hash_covers_payload(self) -> None:
        a = EventRecord.create("evt_1", EventKind.CLAIM_REWARDS, ACTOR, {"amount": 1})
        b = EventRecord.create("evt_1", EventKind.CLAIM_REWARDS, ACTOR, {"amount": 2})
        assert a.event_hash.startswith("sha256:")
        assert a.event_hash != b.event_hash

    def test_filter_by_kind(self) -> None:
        log = EventLog()
        log.emit(EventKind.STAKE, ACTOR, {})
        log.emit(EventKind.CLAIM_REWARDS, ACTOR, {})
        log.emit(EventKind.STAKE, ACTOR, {})
        assert len(log.events(EventKind.STAKE)) == 2
        assert len(log.events(EventKind.CLAIM_REWARDS)) == 1

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        event = log.emit(EventKind.STAKE, ACTOR, {})
        with pytest.raises(ValueError, match="Duplicate event ID"):
            log.append(event)


class TestDigest:
    def test_digest_changes_with_each_event(self) -> None:
        log = EventLog()
        empty = log.digest()
        log.emit(EventKind.STAKE, ACTOR, {"amount": 1}, timestamp=_now())
        assert log.digest() != empty
        assert len(bytes.fromhex(log.digest())) == 32

    def test_digest_is_deterministic(self) -> None:
        logs = [EventLog(), EventLog()]
        for log in logs:
            log.emit(EventKind.STAKE, ACTOR, {"amount": 1}, timestamp=_now())
        assert logs[0].digest() == logs[1].digest()


class TestFilePersistence:
    def test_reload(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.emit(EventKind.STAKE, ACTOR, {"amount": 5}, timestamp=_now())
        log.emit(EventKind.CLAIM_REWARDS, ACTOR, {"amount": 1}, timestamp=_now())

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.digest() == log.digest()
        assert reloaded.emit(EventKind.STAKE, ACTOR, {}).event_id == "evt_00000003"

    def test_tampered_record_rejected(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.emit(EventKind.CLAIM_REWARDS, ACTOR, {"amount": 1}, timestamp=_now())

        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["amount"] = 1_000_000
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_duplicate_line_rejected(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.emit(EventKind.STAKE, ACTOR, {}, timestamp=_now())
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")

        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)


class _FullDisk(EventLog):
    full = False

    def _append_to_file(self, events) -> None:
        if self.full:
            raise OSError("disk full")
        super()._append_to_file(events)


class TestTransaction:
    def test_events_recorded_on_exit(self) -> None:
        log = EventLog()
        with log.transaction():
            log.emit(EventKind.TRANSFER, ACTOR, {})
            log.emit(EventKind.STAKE, ACTOR, {})
            assert log.count == 0
        assert [e.event_id for e in log.events()] == ["evt_00000001", "evt_00000002"]

    def test_error_discards_events(self) -> None:
        log = EventLog()
        with pytest.raises(RuntimeError):
            with log.transaction():
                log.emit(EventKind.STAKE, ACTOR, {})
                raise RuntimeError("boom")
        assert log.count == 0
        assert log.emit(EventKind.STAKE, ACTOR, {}).event_id == "evt_00000001"

    def test_failed_inner_block_keeps_outer_events(self) -> None:
        log = EventLog()
        with log.transaction():
            log.emit(EventKind.TRANSFER, ACTOR, {})
            with pytest.raises(RuntimeError):
                with log.transaction():
                    log.emit(EventKind.STAKE, ACTOR, {})
                    raise RuntimeError("boom")
        assert [e.event_kind for e in log.events()] == [EventKind.TRANSFER]

    def test_write_failure_records_nothing(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        log = _FullDisk(storage_path=path)
        log.emit(EventKind.STAKE, ACTOR, {}, timestamp=_now())
        log.full = True
        with pytest.raises(OSError, match="disk full"):
            with log.transaction():
                log.emit(EventKind.TRANSFER, ACTOR, {})
                log.emit(EventKind.CLAIM_REWARDS, ACTOR, {})
        assert log.count == 1
        assert EventLog(storage_path=path).count == 1

    def test_batch_written_together(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        with log.transaction():
            log.emit(EventKind.TRANSFER, ACTOR, {}, timestamp=_now())
            log.emit(EventKind.STAKE, ACTOR, {}, timestamp=_now())
        assert len(path.read_text(encoding="utf-8").splitlines()) == 2
        assert EventLog(storage_path=path).digest() == log.digest()
