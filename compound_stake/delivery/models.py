"""
Data models for operation delivery.

Operation and LivenessToken are immutable; a DeliveryAttempt owns the signed
bytes of one attempt and an AttemptStatusCell that the confirmation watch
settles exactly once.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

DEFAULT_COMMITMENT = "confirmed"
DEFAULT_REBROADCAST_INTERVAL_SEC = 15.0
DEFAULT_MAX_RESIGNS = 5
DEFAULT_SIMULATION_RETRIES = 3
DEFAULT_SIMULATION_RETRY_DELAY_SEC = 1.0
DEFAULT_COMPUTE_UNIT_MARGIN = 1.05
DEFAULT_SETTLE_GRACE_SEC = 10.0
# About LAST_VALID_HEIGHT_MARGIN blocks at 0.4 s per block
DEFAULT_HEIGHT_TIMEOUT_SEC = 60.0


@dataclass(frozen=True)
class Operation:
    """
    Unsigned request built by the staking program adapter.

    payer: signing keypair (solders Keypair or compatible) that pays fees.
    instructions: opaque instruction payloads, passed through to the signer.
    compute_unit_limit: when set, a compute-budget instruction is prepended at signing.
    """

    name: str
    payer: Any
    instructions: tuple[Any, ...]
    extra_signers: tuple[Any, ...] = ()
    compute_unit_limit: int | None = None

    def with_compute_units(self, units_consumed: int, margin: float = DEFAULT_COMPUTE_UNIT_MARGIN) -> "Operation":
        """Return a copy whose compute-unit limit is units_consumed plus the safety margin."""
        return replace(self, compute_unit_limit=int(math.ceil(units_consumed * margin)))

    @property
    def payer_key(self) -> str:
        pubkey = getattr(self.payer, "pubkey", None)
        return str(pubkey()) if callable(pubkey) else str(self.payer)


@dataclass(frozen=True)
class LivenessToken:
    """Recent blockhash and the last block height at which it is still accepted."""

    blockhash: str
    last_valid_height: int


@dataclass(frozen=True)
class SignedOperation:
    """Serialized signed transaction bytes and their (first) signature."""

    serialized: bytes
    signature: str


@dataclass(frozen=True)
class SimulationResult:
    ok: bool
    units_consumed: int | None = None
    error: str | None = None
    blockhash_not_found: bool = False


class AttemptStatus(str, Enum):
    BROADCASTING = "broadcasting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class AttemptStatusCell:
    """
    Single-assignment status shared by the confirmation watch and the rebroadcast loop.

    Backed by an asyncio.Future: settle() writes once (later writes are ignored),
    readers poll .status or await wait() without taking a lock.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[AttemptStatus] = asyncio.get_running_loop().create_future()

    @property
    def settled(self) -> bool:
        return self._future.done()

    @property
    def status(self) -> AttemptStatus:
        if not self._future.done():
            return AttemptStatus.BROADCASTING
        return self._future.result()

    def settle(self, status: AttemptStatus) -> bool:
        """Write the final status. Returns False if already settled."""
        if status is AttemptStatus.BROADCASTING:
            raise ValueError("cannot settle to BROADCASTING")
        if self._future.done():
            return False
        self._future.set_result(status)
        return True

    async def wait(self) -> AttemptStatus:
        # shield: cancelling a waiter must not cancel the shared future
        return await asyncio.shield(self._future)


@dataclass
class DeliveryAttempt:
    """One signed attempt. serialized_signed never changes; rebroadcasts resend it verbatim."""

    number: int
    token: LivenessToken
    serialized_signed: bytes
    signature: str
    cell: AttemptStatusCell = field(repr=False)
    rebroadcasts: int = 0

    @property
    def last_valid_height(self) -> int:
        return self.token.last_valid_height

    @property
    def status(self) -> AttemptStatus:
        return self.cell.status


@dataclass(frozen=True)
class DeliveryOptions:
    """
    Per-delivery knobs. rebroadcast_interval_sec and settle_grace_sec default to the
    public-endpoint tier; Settings.delivery_options() derives them from the RPC URL.

    commitment: level the confirmation watch waits for.
    height_timeout_sec: with no successful block height reading for this long,
        the attempt's window is treated as closed.
    """

    commitment: str = DEFAULT_COMMITMENT
    rebroadcast: bool = True
    rebroadcast_interval_sec: float = DEFAULT_REBROADCAST_INTERVAL_SEC
    max_resigns: int = DEFAULT_MAX_RESIGNS
    simulate_first: bool = True
    simulation_retries: int = DEFAULT_SIMULATION_RETRIES
    simulation_retry_delay_sec: float = DEFAULT_SIMULATION_RETRY_DELAY_SEC
    compute_unit_margin: float = DEFAULT_COMPUTE_UNIT_MARGIN
    settle_grace_sec: float = DEFAULT_SETTLE_GRACE_SEC
    height_timeout_sec: float = DEFAULT_HEIGHT_TIMEOUT_SEC

    def __post_init__(self) -> None:
        if self.max_resigns < 0:
            raise ValueError("max_resigns must be >= 0")
        if self.rebroadcast_interval_sec < 0:
            raise ValueError("rebroadcast_interval_sec must be >= 0")
        if self.simulation_retries < 1:
            raise ValueError("simulation_retries must be >= 1")
        if self.height_timeout_sec < 0:
            raise ValueError("height_timeout_sec must be >= 0")
