"""
Locked stake position selection: which existing position to top up.

Rewards are compounded into an existing position at the maximum lock tier
when there is one; otherwise a fresh liquid stake is created. Selection is a
pure function over immutable records, chosen by name (UPGRADE_SELECTION).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

MAX_LOCK_DURATION_DAYS = 540


@dataclass(frozen=True)
class LockedPosition:
    """One locked stake. amount is in native token units."""

    position_id: int
    amount: int
    lock_duration_days: int
    resolution_thread_id: int | None = None

    @property
    def is_active(self) -> bool:
        return self.amount > 0

    @property
    def is_max_locked(self) -> bool:
        return self.lock_duration_days == MAX_LOCK_DURATION_DAYS


SelectionStrategy = Callable[[Sequence[LockedPosition]], "LockedPosition | None"]


def select_smallest_max_locked(positions: Sequence[LockedPosition]) -> LockedPosition | None:
    """Active max-tier position with the lowest amount; ties -> lowest position_id."""
    candidates = [p for p in positions if p.is_active and p.is_max_locked]
    if not candidates:
        return None
    return min(candidates, key=lambda p: (p.amount, p.position_id))


def select_first_with_thread(positions: Sequence[LockedPosition]) -> LockedPosition | None:
    """First active max-tier position (in account order) that has a resolution thread."""
    for p in positions:
        if p.is_active and p.is_max_locked and p.resolution_thread_id is not None:
            return p
    return None


STRATEGIES: dict[str, SelectionStrategy] = {
    "smallest_max_locked": select_smallest_max_locked,
    "first_with_thread": select_first_with_thread,
}


def get_strategy(name: str) -> SelectionStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown upgrade selection strategy {name!r}; expected one of {sorted(STRATEGIES)}") from None
