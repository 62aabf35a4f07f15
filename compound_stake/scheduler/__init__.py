"""
Round scheduling: round deadlines, position selection, the two-tier wake-up
timer and the cycle driver that ties them to the delivery engine.
"""

from compound_stake.scheduler.engine import AccountOutcome, CycleReport, RoundScheduler
from compound_stake.scheduler.positions import LockedPosition, get_strategy
from compound_stake.scheduler.rounds import MIN_ROUND_DURATION_SECONDS, RoundState, is_stale, next_deadline
from compound_stake.scheduler.timer import ScheduleTimer

__all__ = [
    "AccountOutcome",
    "CycleReport",
    "LockedPosition",
    "MIN_ROUND_DURATION_SECONDS",
    "RoundScheduler",
    "RoundState",
    "ScheduleTimer",
    "get_strategy",
    "is_stale",
    "next_deadline",
]
