"""stakeledger CLI — command-line interface for the token ledger and reward pool.

Usage:
    python -m stakeledger.cli init --admin 0xOwner --rate 100 --at 1700000000
    python -m stakeledger.cli mint --caller 0xOwner --to 0xAlice --amount 100
    python -m stakeledger.cli approve --caller 0xAlice --amount 100
    python -m stakeledger.cli stake --caller 0xAlice --amount 100 --at 1700000000
    python -m stakeledger.cli position --account 0xAlice --at 1700086400
    python -m stakeledger.cli claim --caller 0xAlice --at 1700086400
    python -m stakeledger.cli status
    python -m stakeledger.cli check-invariants

Amounts are whole-token decimals ("12.5"). --at is a Unix timestamp and
defaults to the current time. State persists under the data directory
(--data, $STAKELEDGER_DATA_DIR, or ./data).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from stakeledger.access import BURNER_ROLE, DEFAULT_ADMIN_ROLE, MINTER_ROLE
from stakeledger.config import DEFAULT_CONFIG, PoolConfig, load_environment
from stakeledger.errors import PoolError
from stakeledger.persistence.event_log import EventLog
from stakeledger.persistence.state_store import StateStore
from stakeledger.service import ServiceResult, StakingService
from stakeledger.units import format_units, to_units

logger = logging.getLogger("stakeledger.cli")


def _paths(data_dir: Path) -> tuple[Path, Path]:
    return data_dir / "state.json", data_dir / "events.jsonl"


def _load_service(args: argparse.Namespace) -> Optional[StakingService]:
    state_path, events_path = _paths(args.data)
    service = StakingService.load(
        StateStore(storage_path=state_path),
        event_log=EventLog(storage_path=events_path),
    )
    if service is None:
        print(f"No pool state in {args.data}; run 'init' first", file=sys.stderr)
    return service


def _report(result: ServiceResult, message: str) -> int:
    if result.success:
        print(message)
        if "warning" in result.data:
            print(result.data["warning"], file=sys.stderr)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_init(args: argparse.Namespace) -> int:
    state_path, events_path = _paths(args.data)
    if state_path.exists() and not args.force:
        print(f"Pool state already exists in {args.data} (use --force)", file=sys.stderr)
        return 1
    config = PoolConfig.from_config_dir(args.config)
    if args.force:
        state_path.unlink(missing_ok=True)
        events_path.unlink(missing_ok=True)
    service = StakingService.deploy(
        config,
        admin=args.admin,
        now=args.at,
        reward_rate=to_units(args.rate) if args.rate else None,
        event_log=EventLog(storage_path=events_path),
        state_store=StateStore(storage_path=state_path),
    )
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_mint(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.mint(args.caller, args.to, to_units(args.amount))
    return _report(result, f"Minted {args.amount} to {args.to}")


def cmd_burn(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.burn(args.caller, args.account, to_units(args.amount))
    return _report(result, f"Burned {args.amount} from {args.account}")


def cmd_transfer(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.transfer(args.caller, args.to, to_units(args.amount))
    return _report(result, f"Transferred {args.amount} to {args.to}")


def cmd_approve(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.approve(args.caller, to_units(args.amount))
    return _report(result, f"Pool may now spend {args.amount} of {args.caller}")


def cmd_grant_role(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.grant_token_role(args.caller, args.role, args.account)
    return _report(result, f"Granted {args.role} to {args.account}")


def cmd_set_rate(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.set_reward_rate(args.caller, to_units(args.rate), now=args.at)
    return _report(result, f"Reward rate set to {args.rate} per period")


def cmd_stake(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.stake(args.caller, to_units(args.amount), now=args.at)
    return _report(result, f"Staked {args.amount}")


def cmd_unstake(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.unstake(args.caller, to_units(args.amount), now=args.at)
    return _report(result, f"Unstaked {args.amount}")


def cmd_restake(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.restake(args.caller, now=args.at)
    return _report(result, f"Compounded {format_units(result.data.get('amount', 0))}")


def cmd_claim(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.claim_rewards(args.caller, now=args.at)
    return _report(result, f"Claimed {format_units(result.data.get('amount', 0))}")


def cmd_position(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.position(args.account, now=args.at)
    if result.success:
        print(json.dumps(result.data, indent=2))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_check_invariants(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = service.check_invariants()
    if result.success:
        print("All invariants hold")
        return 0
    for error in result.errors:
        print(f"VIOLATION: {error}", file=sys.stderr)
    return 1


def cmd_anchor(args: argparse.Namespace) -> int:
    """Anchor the event-log digest on chain."""
    from stakeledger.crypto.anchor import anchor_digest

    env = load_environment()
    if not env.rpc_url or not env.private_key:
        print("Missing ANCHOR_RPC_URL and/or ANCHOR_PRIVATE_KEY", file=sys.stderr)
        return 1
    service = _load_service(args)
    if service is None:
        return 1
    config = PoolConfig.from_config_dir(args.config)
    record = anchor_digest(
        service.event_log.digest(),
        service.event_log.count,
        env.rpc_url,
        env.private_key,
        settings=config.anchor,
    )
    print(json.dumps(record.__dict__, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stakeledger",
        description="Time-weighted reward pool over a token ledger",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Path to data directory (default: $STAKELEDGER_DATA_DIR or data/)",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command")

    def timed(p: argparse.ArgumentParser) -> None:
        p.add_argument("--at", type=int, default=None, help="Unix timestamp (default: now)")

    sub.add_parser("status", help="Show token and pool status")

    p_init = sub.add_parser("init", help="Deploy a fresh token and pool")
    p_init.add_argument("--admin", required=True, help="Admin address for token and pool")
    p_init.add_argument("--rate", help="Reward per period (default: from config)")
    p_init.add_argument("--force", action="store_true", help="Discard existing state")
    timed(p_init)

    p_mint = sub.add_parser("mint", help="Mint tokens (MINTER_ROLE)")
    p_mint.add_argument("--caller", required=True)
    p_mint.add_argument("--to", required=True)
    p_mint.add_argument("--amount", required=True)

    p_burn = sub.add_parser("burn", help="Burn tokens (BURNER_ROLE)")
    p_burn.add_argument("--caller", required=True)
    p_burn.add_argument("--account", required=True)
    p_burn.add_argument("--amount", required=True)

    p_transfer = sub.add_parser("transfer", help="Transfer tokens")
    p_transfer.add_argument("--caller", required=True)
    p_transfer.add_argument("--to", required=True)
    p_transfer.add_argument("--amount", required=True)

    p_approve = sub.add_parser("approve", help="Approve the pool to pull tokens")
    p_approve.add_argument("--caller", required=True)
    p_approve.add_argument("--amount", required=True)

    p_grant = sub.add_parser("grant-role", help="Grant a token role (DEFAULT_ADMIN_ROLE)")
    p_grant.add_argument("--caller", required=True)
    p_grant.add_argument(
        "--role", required=True,
        choices=[DEFAULT_ADMIN_ROLE, MINTER_ROLE, BURNER_ROLE],
    )
    p_grant.add_argument("--account", required=True)

    p_rate = sub.add_parser("set-rate", help="Change the reward per period (pool admin)")
    p_rate.add_argument("--caller", required=True)
    p_rate.add_argument("--rate", required=True)
    timed(p_rate)

    p_stake = sub.add_parser("stake", help="Stake tokens into the pool")
    p_stake.add_argument("--caller", required=True)
    p_stake.add_argument("--amount", required=True)
    timed(p_stake)

    p_unstake = sub.add_parser("unstake", help="Withdraw staked tokens")
    p_unstake.add_argument("--caller", required=True)
    p_unstake.add_argument("--amount", required=True)
    timed(p_unstake)

    p_restake = sub.add_parser("restake", help="Compound pending reward into stake")
    p_restake.add_argument("--caller", required=True)
    timed(p_restake)

    p_claim = sub.add_parser("claim", help="Claim pending reward")
    p_claim.add_argument("--caller", required=True)
    timed(p_claim)

    p_pos = sub.add_parser("position", help="Show an account's balance, stake and pending reward")
    p_pos.add_argument("--account", required=True)
    timed(p_pos)

    sub.add_parser("check-invariants", help="Verify pool accounting invariants")
    sub.add_parser("anchor", help="Anchor the event-log digest on chain")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    env = load_environment()
    if args.data is None:
        args.data = env.data_dir
    logging.basicConfig(
        level=(args.log_level or env.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "init": cmd_init,
        "status": cmd_status,
        "mint": cmd_mint,
        "burn": cmd_burn,
        "transfer": cmd_transfer,
        "approve": cmd_approve,
        "grant-role": cmd_grant_role,
        "set-rate": cmd_set_rate,
        "stake": cmd_stake,
        "unstake": cmd_unstake,
        "restake": cmd_restake,
        "claim": cmd_claim,
        "position": cmd_position,
        "check-invariants": cmd_check_invariants,
        "anchor": cmd_anchor,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (PoolError, ValueError, OSError) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
