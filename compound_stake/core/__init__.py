"""
Core utilities: exception taxonomy and the shared retry/backoff policy
used by the delivery engine and the round scheduler.
"""

from compound_stake.core.exceptions import (
    CompoundStakeError,
    ConfigurationError,
    DeliveryCancelled,
    DeliveryError,
    DeliveryExhausted,
    NoAccountsConfigured,
    RoundStateUnavailable,
)
from compound_stake.core.retry import RetryPolicy, retry_async

__all__ = [
    "CompoundStakeError",
    "ConfigurationError",
    "DeliveryCancelled",
    "DeliveryError",
    "DeliveryExhausted",
    "NoAccountsConfigured",
    "RetryPolicy",
    "RoundStateUnavailable",
    "retry_async",
]
