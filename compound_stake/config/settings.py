"""
Application settings loaded from environment variables and .env files.

A single Settings value is built at startup and passed into the delivery
engine, the scheduler and the runtime; nothing reads os.environ after that.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from compound_stake.config.env import (
    get_rpc_url,
    is_public_rpc,
    load_env,
    mask_rpc_url,
    parse_bool_env,
    parse_float_env,
    parse_int_env,
)
from compound_stake.core.exceptions import ConfigurationError

DEFAULT_COMMITMENT = "confirmed"
VALID_COMMITMENTS = ("processed", "confirmed", "finalized")
DEFAULT_PING_INTERVAL_SEC = 10 * 60.0
DEFAULT_MIN_ROUND_DURATION_SEC = 3_600 * 6
DEFAULT_MAX_RESIGNS = 5

# (public endpoint, dedicated endpoint)
REBROADCAST_INTERVAL_SEC = (15.0, 5.0)
RPC_READ_DELAY_SEC = (5.0, 0.5)
RPC_WRITE_DELAY_SEC = (10.0, 1.0)

UPGRADE_SELECTION_SMALLEST = "smallest_max_locked"
UPGRADE_SELECTION_THREAD = "first_with_thread"
UPGRADE_SELECTIONS = (UPGRADE_SELECTION_SMALLEST, UPGRADE_SELECTION_THREAD)


def _tiered(rpc_url: str, values: tuple[float, float]) -> float:
    return values[0] if is_public_rpc(rpc_url) else values[1]


@dataclass
class Settings:
    """
    Process configuration. Fields left as None take an endpoint-tiered default:
    the shared public RPC gets slower pacing and a longer rebroadcast interval.
    """

    rpc_url: str = field(default_factory=get_rpc_url)
    commitment: str = field(
        default_factory=lambda: (os.getenv("SOLANA_COMMITMENT") or DEFAULT_COMMITMENT).strip().lower()
    )
    wallet_secret_keys_file_path: str = field(
        default_factory=lambda: (os.getenv("WALLET_SECRET_KEYS_FILE_PATH") or "").strip()
    )
    staking_program_factory: str = field(
        default_factory=lambda: (os.getenv("STAKING_PROGRAM_FACTORY") or "").strip()
    )
    resolve_staking_rounds: bool = field(default_factory=lambda: parse_bool_env("RESOLVE_STAKING_ROUNDS", True))
    run_current_round: bool = field(default_factory=lambda: parse_bool_env("RUN_CURRENT_ROUND", True))
    schedule_next_rounds: bool = field(default_factory=lambda: parse_bool_env("SCHEDULE_NEXT_ROUNDS", True))
    schedule_ping_interval_sec: float = field(
        default_factory=lambda: parse_float_env("SCHEDULE_PING_INTERVAL_SEC", DEFAULT_PING_INTERVAL_SEC)
    )
    min_round_duration_sec: int = field(
        default_factory=lambda: parse_int_env("ROUND_MIN_DURATION_SECONDS", DEFAULT_MIN_ROUND_DURATION_SEC)
    )
    max_resigns: int = field(default_factory=lambda: parse_int_env("MAX_RESIGNS", DEFAULT_MAX_RESIGNS))
    rebroadcast: bool = field(default_factory=lambda: parse_bool_env("REBROADCAST", True))
    simulate_first: bool = field(default_factory=lambda: parse_bool_env("SIMULATE_FIRST", True))
    rebroadcast_interval_sec: float | None = field(
        default_factory=lambda: parse_float_env("REBROADCAST_INTERVAL_SEC", -1.0)
    )
    rpc_read_delay_sec: float | None = field(default_factory=lambda: parse_float_env("RPC_READ_DELAY_SEC", -1.0))
    rpc_write_delay_sec: float | None = field(default_factory=lambda: parse_float_env("RPC_WRITE_DELAY_SEC", -1.0))
    upgrade_selection: str = field(
        default_factory=lambda: (os.getenv("UPGRADE_SELECTION") or UPGRADE_SELECTION_SMALLEST).strip().lower()
    )
    debug: bool = field(default_factory=lambda: parse_bool_env("DEBUG", False))

    def __post_init__(self) -> None:
        self.rpc_url = self.rpc_url.strip()
        if not self.rpc_url:
            raise ConfigurationError("RPC_URL must be non-empty")
        if self.commitment not in VALID_COMMITMENTS:
            raise ConfigurationError(f"SOLANA_COMMITMENT must be one of {VALID_COMMITMENTS}, got {self.commitment!r}")
        if self.schedule_ping_interval_sec <= 0:
            raise ConfigurationError("SCHEDULE_PING_INTERVAL_SEC must be positive")
        if self.min_round_duration_sec <= 0:
            raise ConfigurationError("ROUND_MIN_DURATION_SECONDS must be positive")
        if self.max_resigns < 0:
            raise ConfigurationError("MAX_RESIGNS must be >= 0")
        if self.upgrade_selection not in UPGRADE_SELECTIONS:
            raise ConfigurationError(
                f"UPGRADE_SELECTION must be one of {UPGRADE_SELECTIONS}, got {self.upgrade_selection!r}"
            )
        # Negative or None means "use the tiered default"
        if self.rebroadcast_interval_sec is None or self.rebroadcast_interval_sec < 0:
            self.rebroadcast_interval_sec = _tiered(self.rpc_url, REBROADCAST_INTERVAL_SEC)
        if self.rpc_read_delay_sec is None or self.rpc_read_delay_sec < 0:
            self.rpc_read_delay_sec = _tiered(self.rpc_url, RPC_READ_DELAY_SEC)
        if self.rpc_write_delay_sec is None or self.rpc_write_delay_sec < 0:
            self.rpc_write_delay_sec = _tiered(self.rpc_url, RPC_WRITE_DELAY_SEC)

    @property
    def is_public_rpc(self) -> bool:
        return is_public_rpc(self.rpc_url)

    @property
    def secret_keys_path(self) -> Path:
        if not self.wallet_secret_keys_file_path:
            raise ConfigurationError(
                "Please provide WALLET_SECRET_KEYS_FILE_PATH=/abs/path/to/secret/keys/file"
            )
        return Path(self.wallet_secret_keys_file_path)

    def delivery_options(self) -> Any:
        """DeliveryOptions derived from these settings."""
        from compound_stake.delivery.models import DeliveryOptions

        return DeliveryOptions(
            commitment=self.commitment,
            rebroadcast=self.rebroadcast,
            rebroadcast_interval_sec=float(self.rebroadcast_interval_sec),
            max_resigns=self.max_resigns,
            simulate_first=self.simulate_first,
            settle_grace_sec=float(self.rpc_write_delay_sec),
        )

    def to_log_dict(self) -> dict[str, Any]:
        """Settings safe to log (API keys masked)."""
        return {
            "rpc_url": mask_rpc_url(self.rpc_url),
            "public_rpc": self.is_public_rpc,
            "commitment": self.commitment,
            "resolve_staking_rounds": self.resolve_staking_rounds,
            "run_current_round": self.run_current_round,
            "schedule_next_rounds": self.schedule_next_rounds,
            "schedule_ping_interval_sec": self.schedule_ping_interval_sec,
            "min_round_duration_sec": self.min_round_duration_sec,
            "max_resigns": self.max_resigns,
            "rebroadcast": self.rebroadcast,
            "rebroadcast_interval_sec": self.rebroadcast_interval_sec,
            "simulate_first": self.simulate_first,
            "upgrade_selection": self.upgrade_selection,
        }


def get_settings(**overrides: Any) -> Settings:
    """Load .env, then build Settings from the environment; keyword overrides win."""
    load_env()
    return Settings(**overrides)
