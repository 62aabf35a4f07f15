"""
Bounded retry with exponential backoff for async RPC calls.

Used for round-state reads (retry on any exception) and for transaction
simulation (retry while the result reports an unknown blockhash).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, TypeVar

from compound_stake.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """attempts: total tries (>= 1). Delay doubles per retry (multiplier), capped at max_delay_sec."""

    attempts: int = 3
    initial_delay_sec: float = 1.0
    max_delay_sec: float = 60.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.initial_delay_sec < 0:
            raise ValueError("initial_delay_sec must be >= 0")

    def delays(self) -> Iterator[float]:
        """Delays between consecutive attempts (attempts - 1 values)."""
        delay = self.initial_delay_sec
        for _ in range(self.attempts - 1):
            yield delay
            delay = min(delay * self.multiplier, self.max_delay_sec)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    event: str = "retry",
    retry_exceptions: tuple[type[BaseException], ...] = (Exception,),
    retry_on_result: Callable[[T], bool] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **log_fields: Any,
) -> T:
    """
    Call fn until it succeeds or policy.attempts are used.

    Exceptions matching retry_exceptions are retried and the last one re-raised
    when attempts run out; other exceptions propagate immediately.
    When retry_on_result is given, a result for which it returns True is retried
    too; the last such result is returned (not raised) once attempts run out.
    """
    delays = policy.delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            result = await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not isinstance(e, retry_exceptions):
                raise
            delay = next(delays, None)
            if delay is None:
                logger.error(f"{event}_give_up", attempt=attempt, error=str(e), **log_fields)
                raise
            logger.warning(f"{event}_retry", attempt=attempt, delay_sec=delay, error=str(e), **log_fields)
            await sleep(delay)
            continue
        if retry_on_result is None or not retry_on_result(result):
            return result
        delay = next(delays, None)
        if delay is None:
            return result
        logger.debug(f"{event}_retry_result", attempt=attempt, delay_sec=delay, **log_fields)
        await sleep(delay)
