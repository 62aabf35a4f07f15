"""
Environment variable loading and parsing helpers.

- RPC_URL / SOLANA_RPC_URL: RPC endpoint (default: public mainnet-beta).
- Loads .env from project root (and the working directory) when available.
- The public default endpoint is rate limited; pacing and rebroadcast
  defaults are tiered on is_public_rpc().
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from compound_stake.core.exceptions import ConfigurationError

# Project root: config is compound_stake/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def load_env() -> None:
    """Load .env from project root, then from cwd. Existing env vars win. Safe to call multiple times."""
    load_dotenv(_ENV_PATH)
    load_dotenv()


def parse_bool_env(name: str, default: bool) -> bool:
    """Unset or empty -> default; 1/true/yes/on -> True; 0/false/no/off -> False."""
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def parse_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def parse_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def get_rpc_url() -> str:
    """Order: RPC_URL > SOLANA_RPC_URL > public mainnet-beta."""
    for name in ("RPC_URL", "SOLANA_RPC_URL"):
        url = (os.getenv(name) or "").strip()
        if url:
            return url
    return DEFAULT_RPC_URL


def is_public_rpc(rpc_url: str) -> bool:
    """True for the shared public endpoint (slower pacing, longer rebroadcast interval)."""
    return rpc_url.rstrip("/") == DEFAULT_RPC_URL


def mask_rpc_url(rpc_url: str) -> str:
    """Hide API keys in RPC URLs before logging them."""
    if "api-key=" in rpc_url:
        return rpc_url.split("api-key=")[0] + "api-key=***"
    return rpc_url
