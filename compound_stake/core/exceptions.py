"""
Application-level exceptions.

Delivery failures carry the signatures of every attempt so callers can log
them; configuration and round-state errors decide the process exit code.
"""

from __future__ import annotations


class CompoundStakeError(Exception):
    """Base class for all compound_stake errors."""


class ConfigurationError(CompoundStakeError):
    """Missing or invalid settings, keys file, or staking program factory."""


class NoAccountsConfigured(CompoundStakeError):
    """No signing accounts were loaded; nothing to act on."""


class RoundStateUnavailable(CompoundStakeError):
    """Round start time could not be fetched for any pool."""

    def __init__(self, pools: list[str], last_error: BaseException | None = None) -> None:
        self.pools = list(pools)
        self.last_error = last_error
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Round state unavailable for pools {self.pools}{detail}")


class DeliveryError(CompoundStakeError):
    """An operation could not be delivered."""

    def __init__(self, operation: str, message: str, signatures: list[str] | None = None) -> None:
        self.operation = operation
        self.signatures = list(signatures or [])
        super().__init__(message)


class DeliveryExhausted(DeliveryError):
    """Every attempt within the resign budget failed to confirm."""

    def __init__(self, operation: str, signatures: list[str]) -> None:
        last = signatures[-1] if signatures else "?"
        super().__init__(
            operation,
            f"Failed to confirm {operation} after {len(signatures)} attempt(s); last signature {last}",
            signatures,
        )

    @property
    def attempts(self) -> int:
        return len(self.signatures)


class DeliveryCancelled(DeliveryError):
    """Shutdown was requested while an operation was in flight."""

    def __init__(self, operation: str, signatures: list[str] | None = None) -> None:
        super().__init__(operation, f"Delivery of {operation} cancelled by shutdown", signatures)
