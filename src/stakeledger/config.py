"""Configuration — pool parameters from config/, deployment values from the environment.

Parameters that define the pool (token name, default reward rate, period
length, anchoring network) live in config/pool_params.json. Values that
differ per deployment or are secret (data directory, log level, RPC URL,
signing key) come from environment variables, which may be supplied in a
.env file at the project root.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from stakeledger.units import SECONDS_PER_PERIOD, to_units

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEFAULT_DATA = ROOT / "data"
PARAMS_FILE = "pool_params.json"

ENV_DATA_DIR = "STAKELEDGER_DATA_DIR"
ENV_LOG_LEVEL = "STAKELEDGER_LOG_LEVEL"
ENV_RPC_URL = "ANCHOR_RPC_URL"
ENV_PRIVATE_KEY = "ANCHOR_PRIVATE_KEY"


@dataclass(frozen=True)
class AnchorSettings:
    chain_id: int = 11155111  # Sepolia
    gas: int = 30_000
    gas_price_gwei: str = "2"
    explorer_tx_url: str = "https://sepolia.etherscan.io/tx/"


@dataclass(frozen=True)
class PoolConfig:
    """Pool parameters. reward_rate is in smallest units per period."""
    token_name: str
    token_symbol: str
    reward_rate: int
    seconds_per_period: int = SECONDS_PER_PERIOD
    anchor: AnchorSettings = field(default_factory=AnchorSettings)

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PoolConfig:
        path = config_dir / PARAMS_FILE
        with path.open("r", encoding="utf-8") as handle:
            params = json.load(handle)
        return cls.from_dict(params)

    @classmethod
    def from_dict(cls, params: dict) -> PoolConfig:
        token = params.get("token", {})
        pool = params.get("pool", {})
        anchor = params.get("anchor", {})
        config = cls(
            token_name=token.get("name", "LabToken"),
            token_symbol=token.get("symbol", "LABT"),
            reward_rate=to_units(pool.get("reward_rate", "100")),
            seconds_per_period=int(pool.get("seconds_per_period", SECONDS_PER_PERIOD)),
            anchor=AnchorSettings(
                chain_id=int(anchor.get("chain_id", AnchorSettings.chain_id)),
                gas=int(anchor.get("gas", AnchorSettings.gas)),
                gas_price_gwei=str(anchor.get("gas_price_gwei", AnchorSettings.gas_price_gwei)),
                explorer_tx_url=anchor.get("explorer_tx_url", AnchorSettings.explorer_tx_url),
            ),
        )
        if config.reward_rate <= 0:
            raise ValueError("pool.reward_rate must be > 0")
        if config.seconds_per_period <= 0:
            raise ValueError("pool.seconds_per_period must be > 0")
        return config


@dataclass(frozen=True)
class Environment:
    data_dir: Path
    log_level: str
    rpc_url: Optional[str]
    private_key: Optional[str]


def load_environment(env_file: Optional[Path] = None) -> Environment:
    """Read deployment settings, loading env_file (default ROOT/.env) first.

    Variables already set in the process environment take precedence over
    the .env file.
    """
    load_dotenv(env_file or ROOT / ".env")
    return Environment(
        data_dir=Path(os.getenv(ENV_DATA_DIR) or DEFAULT_DATA),
        log_level=os.getenv(ENV_LOG_LEVEL, "WARNING").upper(),
        rpc_url=os.getenv(ENV_RPC_URL),
        private_key=os.getenv(ENV_PRIVATE_KEY),
    )
