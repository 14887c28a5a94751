"""Tests for stakeledger CLI — proves CLI dispatches and persists between runs."""

import json
from pathlib import Path

import pytest

from stakeledger.cli import build_parser, main
from stakeledger.crypto.address import normalize_address

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
DAY = 86_400
OWNER = normalize_address("0x" + "11" * 20)
ALICE = normalize_address("0x" + "44" * 20)


def _now() -> int:
    return 1_700_000_000


def _run(tmp_path, *argv: str) -> int:
    return main(["--config", str(CONFIG_DIR), "--data", str(tmp_path), *argv])


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"

    def test_stake_command(self) -> None:
        args = build_parser().parse_args([
            "stake", "--caller", ALICE, "--amount", "12.5", "--at", "5",
        ])
        assert args.command == "stake"
        assert args.amount == "12.5"
        assert args.at == 5

    def test_at_defaults_to_none(self) -> None:
        args = build_parser().parse_args(["claim", "--caller", ALICE])
        assert args.at is None

    def test_unknown_role_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([
                "grant-role", "--caller", OWNER, "--role", "ROOT", "--account", ALICE,
            ])


class TestCLIExecution:
    def test_no_command_shows_help(self, tmp_path) -> None:
        assert main(["--data", str(tmp_path)]) == 0

    def test_status_without_init(self, tmp_path, capsys) -> None:
        assert _run(tmp_path, "status") == 1
        assert "run 'init' first" in capsys.readouterr().err

    def test_init_twice_needs_force(self, tmp_path) -> None:
        assert _run(tmp_path, "init", "--admin", OWNER, "--at", str(_now())) == 0
        assert _run(tmp_path, "init", "--admin", OWNER, "--at", str(_now())) == 1
        assert _run(tmp_path, "init", "--admin", OWNER, "--at", str(_now()), "--force") == 0

    def test_stake_and_claim_e2e(self, tmp_path, capsys) -> None:
        t0 = str(_now())
        t1 = str(_now() + DAY)
        assert _run(tmp_path, "init", "--admin", OWNER, "--at", t0) == 0
        assert _run(tmp_path, "grant-role", "--caller", OWNER,
                    "--role", "MINTER_ROLE", "--account", OWNER) == 0
        assert _run(tmp_path, "mint", "--caller", OWNER, "--to", ALICE, "--amount", "100") == 0
        assert _run(tmp_path, "approve", "--caller", ALICE, "--amount", "100") == 0
        assert _run(tmp_path, "stake", "--caller", ALICE, "--amount", "100", "--at", t0) == 0
        capsys.readouterr()

        assert _run(tmp_path, "position", "--account", ALICE, "--at", t1) == 0
        position = json.loads(capsys.readouterr().out)
        assert position["staked"] == "100"
        assert position["pending_reward"] == "100"

        assert _run(tmp_path, "claim", "--caller", ALICE, "--at", t1) == 0
        assert "Claimed 100" in capsys.readouterr().out
        assert _run(tmp_path, "check-invariants") == 0
        assert (tmp_path / "events.jsonl").exists()

    def test_rejected_operation_exits_nonzero(self, tmp_path, capsys) -> None:
        assert _run(tmp_path, "init", "--admin", OWNER, "--at", str(_now())) == 0
        assert _run(tmp_path, "unstake", "--caller", ALICE, "--amount", "1",
                    "--at", str(_now())) == 1
        assert "position underfunded" in capsys.readouterr().err

    def test_bad_amount_exits_nonzero(self, tmp_path) -> None:
        assert _run(tmp_path, "init", "--admin", OWNER, "--at", str(_now())) == 0
        assert _run(tmp_path, "stake", "--caller", ALICE, "--amount", "lots") == 1
