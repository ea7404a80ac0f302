"""
TOML-based configuration for EscrowStake.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Token amounts are written in whole tokens (a TOML integer or a decimal
string such as ``"1000.5"``) because 18-decimal base units overflow
TOML's 64-bit integers.  The ``*_amount`` properties return base units.

Usage:
    from escrowstake_core.config import load_config
    cfg = load_config("escrowstake.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from escrowstake_core.precision import tokens

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[import,no-redef]

TokenValue = Union[int, str]


@dataclass
class StakingConfig:
    """Stake limits and the pause flag."""
    min_stake_tokens: TokenValue = 1_000
    max_stake_tokens: TokenValue = 1_000_000_000
    min_stake_days: int = 1
    max_stake_days: int = 3641
    paused: bool = False

    @property
    def min_stake_amount(self) -> int:
        return tokens(self.min_stake_tokens)

    @property
    def max_stake_amount(self) -> int:
        return tokens(self.max_stake_tokens)


@dataclass
class RewardsConfig:
    """Emission settings."""
    total_supply_tokens: TokenValue = 100_000_000_000
    daily_emission_ppm: int = 100
    reward_rate: int = 0               # base units per second (0 = derive from emission)

    @property
    def total_supply(self) -> int:
        return tokens(self.total_supply_tokens)


@dataclass
class PenaltyConfig:
    """Early / late unstake penalties."""
    grace_days: int = 14
    late_rate_per_day: int = 143       # per 100 000
    early_policy: str = "piecewise"    # "piecewise" or "flat_fee"
    early_fee_bps: int = 500
    distribute_penalties: bool = True  # burn / pool / treasury split


@dataclass
class BonusConfig:
    quantity_policy: str = "flat_above_cap"   # or "clamp_at_cap"


@dataclass
class TreasuryConfig:
    """Addresses the pool pays into."""
    pool_address: str = "staking-pool"
    treasury_address: str = "treasury"
    owner: str = ""                    # empty = admin operations ungated


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)
    max_body_bytes: int = 65_536


@dataclass
class StorageConfig:
    """Persistence settings."""
    enabled: bool = False
    backend: str = "sqlite"
    path: str = "data/escrowstake.db"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class EscrowStakeConfig:
    """Top-level configuration container."""
    staking: StakingConfig = field(default_factory=StakingConfig)
    rewards: RewardsConfig = field(default_factory=RewardsConfig)
    penalty: PenaltyConfig = field(default_factory=PenaltyConfig)
    bonus: BonusConfig = field(default_factory=BonusConfig)
    treasury: TreasuryConfig = field(default_factory=TreasuryConfig)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: str | None = None) -> EscrowStakeConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping (selected):
        ESCROWSTAKE_MIN_STAKE      -> staking.min_stake_tokens
        ESCROWSTAKE_MAX_STAKE      -> staking.max_stake_tokens
        ESCROWSTAKE_PAUSED         -> staking.paused
        ESCROWSTAKE_EMISSION_PPM   -> rewards.daily_emission_ppm
        ESCROWSTAKE_EARLY_POLICY   -> penalty.early_policy
        ESCROWSTAKE_EARLY_FEE_BPS  -> penalty.early_fee_bps
        ESCROWSTAKE_BONUS_POLICY   -> bonus.quantity_policy
        ESCROWSTAKE_OWNER          -> treasury.owner
        ESCROWSTAKE_API_PORT       -> api.port
        ESCROWSTAKE_LOG_LEVEL      -> logging.level
        ESCROWSTAKE_LOG_FMT        -> logging.format
        ESCROWSTAKE_DB_PATH        -> storage.path
    """
    cfg = EscrowStakeConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("staking", cfg.staking),
                ("rewards", cfg.rewards),
                ("penalty", cfg.penalty),
                ("bonus", cfg.bonus),
                ("treasury", cfg.treasury),
                ("api", cfg.api),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("ESCROWSTAKE_MIN_STAKE"):
        cfg.staking.min_stake_tokens = v
    if v := os.environ.get("ESCROWSTAKE_MAX_STAKE"):
        cfg.staking.max_stake_tokens = v
    if v := os.environ.get("ESCROWSTAKE_PAUSED"):
        cfg.staking.paused = _bool(v)
    if v := os.environ.get("ESCROWSTAKE_EMISSION_PPM"):
        cfg.rewards.daily_emission_ppm = int(v)
    if v := os.environ.get("ESCROWSTAKE_EARLY_POLICY"):
        cfg.penalty.early_policy = v.lower()
    if v := os.environ.get("ESCROWSTAKE_EARLY_FEE_BPS"):
        cfg.penalty.early_fee_bps = int(v)
    if v := os.environ.get("ESCROWSTAKE_BONUS_POLICY"):
        cfg.bonus.quantity_policy = v.lower()
    if v := os.environ.get("ESCROWSTAKE_OWNER"):
        cfg.treasury.owner = v
    if v := os.environ.get("ESCROWSTAKE_TREASURY"):
        cfg.treasury.treasury_address = v
    if v := os.environ.get("ESCROWSTAKE_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("ESCROWSTAKE_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("ESCROWSTAKE_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("ESCROWSTAKE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("ESCROWSTAKE_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("ESCROWSTAKE_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.enabled = True

    return cfg
