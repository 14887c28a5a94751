"""Tests for the staking service facade — proves results, persistence and recovery."""

from pathlib import Path

import pytest

from stakeledger.access import MINTER_ROLE
from stakeledger.config import PoolConfig
from stakeledger.crypto.address import normalize_address
from stakeledger.persistence.event_log import EventKind, EventLog
from stakeledger.persistence.state_store import StateStore
from stakeledger.service import StakingService
from stakeledger.units import to_units

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
DAY = 86_400
OWNER = normalize_address("0x" + "11" * 20)
ALICE = normalize_address("0x" + "44" * 20)
BOB = normalize_address("0x" + "55" * 20)


def _now() -> int:
    return 1_700_000_000


@pytest.fixture
def config() -> PoolConfig:
    return PoolConfig.from_config_dir(CONFIG_DIR)


def _funded(service: StakingService) -> StakingService:
    """Helper: OWNER can mint; ALICE and BOB hold and approve 100 each."""
    assert service.grant_token_role(OWNER, MINTER_ROLE, OWNER).success
    for user in (ALICE, BOB):
        assert service.mint(OWNER, user, to_units("100")).success
        assert service.approve(user, to_units("100")).success
    return service


class _BrokenStore(StateStore):
    broken = False

    def save(self, token, pool) -> None:
        if self.broken:
            raise OSError("disk full")
        super().save(token, pool)


class _FullDisk(EventLog):
    full = False

    def _append_to_file(self, events) -> None:
        if self.full:
            raise OSError("disk full")
        super()._append_to_file(events)


class TestDeploy:
    def test_pool_can_mint(self, config: PoolConfig) -> None:
        service = StakingService.deploy(config, admin=OWNER, now=_now())
        assert service.token.has_role(MINTER_ROLE, service.pool.address)
        assert service.pool.reward_rate() == config.reward_rate
        assert service.event_log is service.token.event_log

    def test_rate_override(self, config: PoolConfig) -> None:
        service = StakingService.deploy(
            config, admin=OWNER, now=_now(), reward_rate=to_units("1200")
        )
        assert service.pool.reward_rate() == to_units("1200")

    def test_status(self, config: PoolConfig) -> None:
        service = StakingService.deploy(config, admin=OWNER, now=_now())
        status = service.status()
        assert status["token"]["symbol"] == "LABT"
        assert status["pool"]["token_contract_address"] == service.token.address
        assert status["pool"]["pool_amount"] == "0"
        assert status["pool"]["period_seconds"] == DAY
        assert status["persistence_degraded"] is False


class TestOperations:
    def test_stake_and_claim(self, config: PoolConfig) -> None:
        service = _funded(StakingService.deploy(config, admin=OWNER, now=_now()))
        assert service.stake(ALICE, to_units("100"), now=_now()).success

        position = service.position(ALICE, now=_now() + DAY)
        assert position.data["staked"] == "100"
        assert position.data["pending_reward"] == "100"

        result = service.claim_rewards(ALICE, now=_now() + DAY)
        assert result.success
        assert result.data["amount"] == to_units("100")
        assert service.position(ALICE, now=_now() + DAY).data["balance"] == "100"

    def test_restake_reports_amount(self, config: PoolConfig) -> None:
        service = _funded(StakingService.deploy(config, admin=OWNER, now=_now()))
        service.stake(ALICE, to_units("100"), now=_now())
        result = service.restake(ALICE, now=_now() + DAY)
        assert result.success
        assert result.data["amount"] == to_units("100")
        assert service.pool.get_stake_amount(ALICE) == to_units("200")

    def test_rejection_is_reported(self, config: PoolConfig) -> None:
        service = _funded(StakingService.deploy(config, admin=OWNER, now=_now()))
        result = service.unstake(ALICE, to_units("1"), now=_now())
        assert not result.success
        assert "position underfunded" in result.errors[0]

    def test_unauthorized_rate_change(self, config: PoolConfig) -> None:
        service = StakingService.deploy(config, admin=OWNER, now=_now())
        result = service.set_reward_rate(ALICE, to_units("1"), now=_now())
        assert not result.success
        assert "missing role" in result.errors[0]

    def test_transfer_and_burn(self, config: PoolConfig) -> None:
        service = _funded(StakingService.deploy(config, admin=OWNER, now=_now()))
        assert service.transfer(ALICE, BOB, to_units("10")).success
        assert not service.burn(OWNER, BOB, to_units("1")).success
        assert service.token.balance_of(BOB) == to_units("110")

    def test_invalid_account_in_position(self, config: PoolConfig) -> None:
        service = StakingService.deploy(config, admin=OWNER, now=_now())
        result = service.position("alice")
        assert not result.success

    def test_check_invariants(self, config: PoolConfig) -> None:
        service = _funded(StakingService.deploy(config, admin=OWNER, now=_now()))
        service.stake(ALICE, to_units("60"), now=_now())
        service.stake(BOB, to_units("40"), now=_now() + 60)
        assert service.check_invariants().success


class TestPersistence:
    def test_reload_from_snapshot(self, config: PoolConfig, tmp_path) -> None:
        store = StateStore(storage_path=tmp_path / "state.json")
        events = tmp_path / "events.jsonl"
        service = StakingService.deploy(
            config, admin=OWNER, now=_now(),
            event_log=EventLog(storage_path=events), state_store=store,
        )
        _funded(service)
        service.stake(ALICE, to_units("100"), now=_now())

        restored = StakingService.load(store, event_log=EventLog(storage_path=events))
        assert restored is not None
        assert restored.status() == service.status()
        assert restored.pool.get_accumulated_reward(ALICE, now=_now() + DAY) == to_units("100")
        assert restored.claim_rewards(ALICE, now=_now() + DAY).success
        assert restored.event_log.events(EventKind.CLAIM_REWARDS)[0].event_id == (
            f"evt_{restored.event_log.count:08d}"
        )

    def test_load_without_snapshot(self, tmp_path) -> None:
        assert StakingService.load(StateStore(storage_path=tmp_path / "state.json")) is None

    def test_corrupt_snapshot(self, tmp_path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError, match="Corrupt state snapshot"):
            StateStore(storage_path=path).load()

    def test_wrong_snapshot_version(self, tmp_path) -> None:
        path = tmp_path / "state.json"
        path.write_text('{"version": 99}', encoding="utf-8")
        with pytest.raises(ValueError, match="Unsupported snapshot version"):
            StateStore(storage_path=path).load()

    def test_snapshot_failure_degrades_without_rollback(self, config: PoolConfig, tmp_path) -> None:
        store = _BrokenStore(storage_path=tmp_path / "state.json")
        service = _funded(StakingService.deploy(config, admin=OWNER, now=_now(), state_store=store))
        store.broken = True

        result = service.stake(ALICE, to_units("100"), now=_now())
        assert result.success
        assert "Persistence degraded" in result.data["warning"]
        assert service.persistence_degraded
        assert service.pool.get_stake_amount(ALICE) == to_units("100")
        assert service.event_log.last_event.event_kind == EventKind.STAKE

    def test_event_log_failure_applies_nothing(self, config: PoolConfig, tmp_path) -> None:
        log = _FullDisk(storage_path=tmp_path / "events.jsonl")
        service = _funded(StakingService.deploy(config, admin=OWNER, now=_now(), event_log=log))
        service.stake(ALICE, to_units("100"), now=_now())
        log.full = True
        before = (service.status(), service.token.to_dict())

        result = service.claim_rewards(ALICE, now=_now() + DAY)
        assert not result.success
        assert "Event log failure" in result.errors[0]
        assert (service.status(), service.token.to_dict()) == before
        assert service.pool.get_accumulated_reward(ALICE, now=_now() + DAY) == to_units("100")
