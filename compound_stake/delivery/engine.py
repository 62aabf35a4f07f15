"""
Reliable operation delivery: simulate, sign, broadcast, confirm, rebroadcast, resign.

Each attempt gets a fresh liveness token and fresh signed bytes. While the
attempt is in flight a confirmation watch task runs next to the rebroadcast
loop; the two only share the attempt's AttemptStatusCell, which the watch
settles exactly once. The loop resends the identical bytes until the cell
settles or the block height passes the token's last valid height. An attempt
that ends unconfirmed is re-signed with a new token until the resign budget
is spent, then DeliveryExhausted is raised.
"""

from __future__ import annotations

import asyncio
import contextlib

from compound_stake.core.exceptions import DeliveryCancelled, DeliveryExhausted
from compound_stake.core.retry import RetryPolicy, retry_async
from compound_stake.delivery.models import (
    AttemptStatus,
    AttemptStatusCell,
    DeliveryAttempt,
    DeliveryOptions,
    LivenessToken,
    Operation,
)
from compound_stake.delivery.network import LedgerNetwork
from compound_stake.logging import get_logger

logger = get_logger(__name__)


class DeliveryEngine:
    """
    Deliver Operations through a LedgerNetwork.

    options: defaults for every deliver() call (Settings.delivery_options()).
    stop_event: when set, in-flight rebroadcast loops end early and no resign
        is attempted; deliver() then raises DeliveryCancelled.
    """

    def __init__(
        self,
        network: LedgerNetwork,
        options: DeliveryOptions | None = None,
        *,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._network = network
        self._options = options or DeliveryOptions()
        self._stop = stop_event or asyncio.Event()

    async def deliver(self, operation: Operation, options: DeliveryOptions | None = None) -> str:
        """Return the confirmed signature, or raise DeliveryExhausted / DeliveryCancelled."""
        opts = options or self._options
        total_attempts = opts.max_resigns + 1
        signatures: list[str] = []
        for number in range(1, total_attempts + 1):
            if self._stop.is_set():
                raise DeliveryCancelled(operation.name, signatures)
            attempt = await self._run_attempt(operation, opts, number)
            signatures.append(attempt.signature)
            if attempt.status is AttemptStatus.CONFIRMED:
                logger.info(
                    "delivery_confirmed",
                    operation=operation.name,
                    payer=operation.payer_key,
                    signature=attempt.signature,
                    attempt=number,
                    rebroadcasts=attempt.rebroadcasts,
                )
                return attempt.signature
            logger.warning(
                "delivery_attempt_failed",
                operation=operation.name,
                signature=attempt.signature,
                attempt=number,
                resigns_left=total_attempts - number,
            )
            if self._stop.is_set():
                raise DeliveryCancelled(operation.name, signatures)
        logger.error(
            "delivery_exhausted",
            operation=operation.name,
            payer=operation.payer_key,
            attempts=len(signatures),
            signatures=signatures,
        )
        raise DeliveryExhausted(operation.name, signatures)

    async def _run_attempt(self, operation: Operation, opts: DeliveryOptions, number: int) -> DeliveryAttempt:
        token = await self._network.get_liveness_token()
        if opts.simulate_first:
            operation = await self._simulate(operation, token, opts)

        signed = self._network.sign(operation, token)
        attempt = DeliveryAttempt(
            number=number,
            token=token,
            serialized_signed=signed.serialized,
            signature=signed.signature,
            cell=AttemptStatusCell(),
        )
        try:
            await self._network.broadcast(attempt.serialized_signed)
        except Exception as e:
            # The next rebroadcast (or the resign) covers a lost first send
            logger.warning("delivery_broadcast_failed", operation=operation.name, signature=attempt.signature, error=str(e))
        logger.debug(
            "delivery_sent",
            operation=operation.name,
            signature=attempt.signature,
            attempt=number,
            last_valid_height=attempt.last_valid_height,
        )

        watch = asyncio.create_task(self._watch(attempt, opts.commitment))
        try:
            await self._hold_window(attempt, opts)
            if not attempt.cell.settled and opts.settle_grace_sec > 0:
                await self._pause(attempt.cell, opts.settle_grace_sec)
            attempt.cell.settle(AttemptStatus.FAILED)
        finally:
            watch.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watch
        return attempt

    async def _simulate(self, operation: Operation, token: LivenessToken, opts: DeliveryOptions) -> Operation:
        """Dry-run a draft; return the operation with a compute-unit limit when simulation reports usage."""
        draft = self._network.sign(operation, token)
        policy = RetryPolicy(
            attempts=opts.simulation_retries,
            initial_delay_sec=opts.simulation_retry_delay_sec,
            multiplier=1.0,
        )
        try:
            result = await retry_async(
                lambda: self._network.simulate(draft.serialized),
                policy,
                event="delivery_simulation",
                retry_exceptions=(),
                retry_on_result=lambda r: r.blockhash_not_found,
                operation=operation.name,
            )
        except Exception as e:
            logger.warning("delivery_simulation_error", operation=operation.name, error=str(e))
            return operation
        if not result.ok:
            logger.warning(
                "delivery_simulation_failed",
                operation=operation.name,
                error=result.error,
                blockhash_not_found=result.blockhash_not_found,
            )
            return operation
        if result.units_consumed:
            tuned = operation.with_compute_units(result.units_consumed, opts.compute_unit_margin)
            logger.debug(
                "delivery_compute_units",
                operation=operation.name,
                units_consumed=result.units_consumed,
                compute_unit_limit=tuned.compute_unit_limit,
            )
            return tuned
        return operation

    async def _watch(self, attempt: DeliveryAttempt, commitment: str) -> None:
        try:
            confirmed = await self._network.confirm(attempt.signature, attempt.token, commitment)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("delivery_confirm_watch_failed", signature=attempt.signature, error=str(e))
            confirmed = False
        attempt.cell.settle(AttemptStatus.CONFIRMED if confirmed else AttemptStatus.FAILED)

    async def _hold_window(self, attempt: DeliveryAttempt, opts: DeliveryOptions) -> None:
        """
        Keep the attempt open until the cell settles or its window closes,
        resending the signed bytes every interval when rebroadcast is on.

        The window is closed once the block height passes last_valid_height,
        or when no block height could be read for height_timeout_sec.
        """
        cell = attempt.cell
        loop = asyncio.get_running_loop()
        height: int | None = None
        height_read_at = loop.time()
        while not cell.settled and not self._stop.is_set():
            try:
                height = await self._network.get_block_height()
                height_read_at = loop.time()
            except Exception as e:
                logger.warning("delivery_block_height_failed", signature=attempt.signature, error=str(e))
                if loop.time() - height_read_at >= opts.height_timeout_sec:
                    logger.warning(
                        "delivery_window_unknown",
                        signature=attempt.signature,
                        height_timeout_sec=opts.height_timeout_sec,
                    )
                    break
            if height is not None and height > attempt.last_valid_height:
                break
            await self._pause(cell, opts.rebroadcast_interval_sec)
            if cell.settled or self._stop.is_set() or not opts.rebroadcast:
                continue
            try:
                await self._network.broadcast(attempt.serialized_signed)
                attempt.rebroadcasts += 1
            except Exception as e:
                logger.warning("delivery_rebroadcast_failed", signature=attempt.signature, error=str(e))
            logger.debug(
                "delivery_rebroadcast",
                signature=attempt.signature,
                rebroadcasts=attempt.rebroadcasts,
                block_height=height,
                last_valid_height=attempt.last_valid_height,
            )

    async def _pause(self, cell: AttemptStatusCell, timeout: float | None) -> None:
        """Sleep up to timeout (None: unbounded); wake early when the cell settles or stop is requested."""
        waiters = {
            asyncio.ensure_future(cell.wait()),
            asyncio.ensure_future(self._stop.wait()),
        }
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
