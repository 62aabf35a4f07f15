"""
Signing accounts loaded from the wallet secret keys file.

File format: one secret key per line, base58 or a JSON array of 64 bytes.
Blank lines and lines starting with '#' are ignored. Duplicate keys are
loaded once; order of first appearance is kept (accounts are processed in
that order).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from compound_stake.core.exceptions import ConfigurationError
from compound_stake.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Account:
    """A signing keypair; public_key (base58) identifies it in logs."""

    keypair: Any

    @property
    def public_key(self) -> str:
        return str(self.keypair.pubkey())


def parse_keypair(secret: str) -> Any:
    """Keypair from a base58 secret key or a JSON array of 64 bytes."""
    import base58
    from solders.keypair import Keypair

    raw = secret.strip()
    if raw.startswith("["):
        arr = json.loads(raw)
        if not isinstance(arr, list) or len(arr) < 64:
            raise ValueError("JSON secret key must be an array of 64 bytes")
        return Keypair.from_bytes(bytes(arr[:64]))
    return Keypair.from_bytes(base58.b58decode(raw))


def load_accounts(path: str | Path) -> list[Account]:
    """Read the secret keys file. Raises ConfigurationError if unreadable or a line is not a valid key."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Unable to init wallet secret keys from secret keys file with path: {path}"
        ) from e

    accounts: list[Account] = []
    seen: set[str] = set()
    for line_no, line in enumerate(text.splitlines(), start=1):
        secret = line.strip()
        if not secret or secret.startswith("#"):
            continue
        try:
            keypair = parse_keypair(secret)
        except Exception as e:
            # Never log or echo the secret itself
            raise ConfigurationError(f"Invalid secret key on line {line_no} of {path}") from e
        account = Account(keypair)
        if account.public_key in seen:
            logger.warning("accounts_duplicate_key", public_key=account.public_key, line=line_no)
            continue
        seen.add(account.public_key)
        accounts.append(account)

    logger.info("accounts_loaded", path=str(path), account_count=len(accounts))
    return accounts
