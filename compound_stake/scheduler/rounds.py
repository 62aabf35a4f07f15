"""
Staking round tracking.

A round's deadline is its on-chain start time plus the minimum round
duration. Once the wall clock passes the deadline the round is stale and must
be resolved on chain before rewards for it can be claimed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

MIN_ROUND_DURATION_SECONDS = 3_600 * 6


def next_deadline(start_time: float, min_duration: float = MIN_ROUND_DURATION_SECONDS) -> float:
    """Unix seconds at which the round that started at start_time may be resolved."""
    return start_time + min_duration


def is_stale(deadline: float, now: float) -> bool:
    """Strictly after the deadline; now == deadline is not stale."""
    return now > deadline


@dataclass(frozen=True)
class RoundState:
    """Snapshot of one pool's current round, refreshed once per cycle."""

    pool: str
    start_time: float
    min_duration: float = MIN_ROUND_DURATION_SECONDS

    @classmethod
    def from_start_time(
        cls,
        pool: str,
        start_time: float,
        min_duration: float = MIN_ROUND_DURATION_SECONDS,
    ) -> "RoundState":
        return cls(pool=pool, start_time=float(start_time), min_duration=float(min_duration))

    @property
    def deadline(self) -> float:
        return next_deadline(self.start_time, self.min_duration)

    def is_stale(self, now: float) -> bool:
        return is_stale(self.deadline, now)

    def remaining(self, now: float) -> float:
        """Seconds until the deadline (negative once stale)."""
        return self.deadline - now

    def deadline_iso(self) -> str:
        return datetime.fromtimestamp(self.deadline, tz=timezone.utc).isoformat()


def farthest(rounds: list[RoundState]) -> RoundState | None:
    """Round with the latest deadline; waking then finds every pool's round due."""
    if not rounds:
        return None
    return max(rounds, key=lambda r: r.deadline)
