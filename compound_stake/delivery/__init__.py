"""
Operation delivery: liveness token, simulate, sign, broadcast, confirm.

Rebroadcasts inside the token window and re-signs on failure.
"""

from compound_stake.delivery.engine import DeliveryEngine
from compound_stake.delivery.models import (
    AttemptStatus,
    AttemptStatusCell,
    DeliveryAttempt,
    DeliveryOptions,
    LivenessToken,
    Operation,
    SignedOperation,
    SimulationResult,
)
from compound_stake.delivery.network import LedgerNetwork, SolanaLedgerNetwork

__all__ = [
    "AttemptStatus",
    "AttemptStatusCell",
    "DeliveryAttempt",
    "DeliveryEngine",
    "DeliveryOptions",
    "LedgerNetwork",
    "LivenessToken",
    "Operation",
    "SignedOperation",
    "SimulationResult",
    "SolanaLedgerNetwork",
]
