"""
Round scheduler: resolve stale rounds, claim and compound rewards, sleep until the next round.

One cycle:
1. Fetch every pool's round start time (bounded retry per pool).
2. If a round is stale and resolve_stale is set, deliver one round-advance
   operation per stale pool (first account pays), then re-run the cycle once
   with resolve_stale=False so the now-current round is processed.
3. If run_current is set, for each account in order: claim for every pool,
   read the reward-token balance, and compound a positive balance into the
   selected max-lock position (upgrade) or a new liquid stake.
4. If schedule_next is set, wait for the farthest deadline with the two-tier
   ScheduleTimer and start over with the configured drivers.

Accounts are processed strictly sequentially; a failed delivery for one
account is logged and never aborts the batch.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

from compound_stake.core.exceptions import NoAccountsConfigured, RoundStateUnavailable
from compound_stake.core.retry import RetryPolicy, retry_async
from compound_stake.logging import get_logger
from compound_stake.scheduler.positions import SelectionStrategy, get_strategy
from compound_stake.scheduler.rounds import RoundState, farthest
from compound_stake.scheduler.timer import ScheduleTimer

if TYPE_CHECKING:
    from compound_stake.agent.accounts import Account
    from compound_stake.agent.program import StakingProgram
    from compound_stake.config.settings import Settings
    from compound_stake.delivery.engine import DeliveryEngine

logger = get_logger(__name__)

ROUND_FETCH_RETRY = RetryPolicy(attempts=3, initial_delay_sec=2.0, max_delay_sec=30.0)
MAX_KEPT_REPORTS = 32

ACTION_STAKE = "stake"
ACTION_UPGRADE = "upgrade"


@dataclass
class AccountOutcome:
    """What one account's pass achieved; failures are recorded, not raised."""

    public_key: str
    claims: dict[str, str] = field(default_factory=dict)
    claim_failures: list[str] = field(default_factory=list)
    balance: int = 0
    action: str | None = None
    position_id: int | None = None
    stake_signature: str | None = None
    error: str | None = None


@dataclass
class CycleReport:
    resolve_stale: bool
    run_current: bool
    rounds: list[RoundState] = field(default_factory=list)
    stale_pools: list[str] = field(default_factory=list)
    # pool -> signature, or None when the resolve delivery failed
    resolved: dict[str, str | None] = field(default_factory=dict)
    accounts: list[AccountOutcome] = field(default_factory=list)

    @property
    def deadline(self) -> float | None:
        target = farthest(self.rounds)
        return target.deadline if target else None


class RoundScheduler:
    """
    Drives staking cycles for a fixed list of accounts.

    clock: wall clock in Unix seconds (time.time); used for staleness and the timer.
    sleep: optional replacement for pacing and timer sleeps (tests).
    selection: position selection strategy; defaults to settings.upgrade_selection.
    """

    def __init__(
        self,
        settings: "Settings",
        program: "StakingProgram",
        engine: "DeliveryEngine",
        accounts: Sequence["Account"],
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        stop_event: asyncio.Event | None = None,
        selection: SelectionStrategy | None = None,
        round_retry: RetryPolicy | None = None,
    ) -> None:
        self._settings = settings
        self._program = program
        self._engine = engine
        self._accounts = list(accounts)
        self._clock = clock
        self._sleep = sleep
        self._stop = stop_event or asyncio.Event()
        self._select = selection or get_strategy(settings.upgrade_selection)
        self._round_retry = round_retry or ROUND_FETCH_RETRY
        self._checks = 0
        self.timer = ScheduleTimer(
            settings.schedule_ping_interval_sec,
            clock=clock,
            sleep=sleep,
            stop_event=self._stop,
        )
        self.reports: deque[CycleReport] = deque(maxlen=MAX_KEPT_REPORTS)

    def stop(self) -> None:
        """Request shutdown: the timer wait and in-flight rebroadcasts return promptly."""
        self._stop.set()

    async def run_forever(self) -> CycleReport | None:
        """Run with the configured drivers until stopped (or once, when scheduling is disabled)."""
        return await self.run_cycle(
            self._settings.resolve_staking_rounds,
            self._settings.run_current_round,
            self._settings.schedule_next_rounds,
        )

    async def run_cycle(
        self,
        resolve_stale: bool = True,
        run_current: bool = True,
        schedule_next: bool = True,
    ) -> CycleReport | None:
        """
        Run a cycle and, if schedule_next, keep re-running at each round boundary.

        Returns the last pass's report once scheduling is disabled or stop is
        requested. Raises NoAccountsConfigured when there is nothing to act on,
        and RoundStateUnavailable when no round is readable on the scheduler's
        first check. Later unreadable round state is logged and retried a ping
        interval later.
        """
        report: CycleReport | None = None
        while not self._stop.is_set():
            report = await self._run_once(resolve_stale, run_current)
            if not schedule_next or self._stop.is_set():
                break
            target = self._next_wake(report)
            if not await self.timer.wait_until(target):
                logger.info("schedule_cancelled")
                break
            resolve_stale, run_current, schedule_next = self._settings.resolve_staking_rounds, True, True
        return report

    def _next_wake(self, report: CycleReport) -> float:
        now = self._clock()
        ping = self._settings.schedule_ping_interval_sec
        deadline = report.deadline
        if deadline is None:
            logger.warning("schedule_no_round_found", retry_in_sec=ping)
            return now + ping
        if deadline <= now:
            # Round still stale after this cycle's single resolve attempt: retry at the next ping
            logger.warning("schedule_round_still_stale", deadline=deadline, retry_in_sec=ping)
            return now + ping
        delta = deadline - now
        logger.info(
            "schedule_next_run",
            pool=farthest(report.rounds).pool,
            delta_sec=round(delta, 3),
            delta_min=round(delta / 60, 2),
            next_run=farthest(report.rounds).deadline_iso(),
        )
        return deadline

    async def _run_once(self, resolve_stale: bool, run_current: bool) -> CycleReport:
        logger.debug("cycle_started", resolve_stale=resolve_stale, run_current=run_current)
        while True:
            first_check = self._checks == 0
            self._checks += 1
            try:
                rounds = await self._check_rounds()
            except RoundStateUnavailable as e:
                if first_check:
                    raise
                # Later cycles: the timer re-arms at the ping interval to retry
                logger.error("round_state_unavailable", pools=e.pools, error=str(e))
                rounds = []
            if not self._accounts:
                logger.info("cycle_no_accounts")
                raise NoAccountsConfigured("No accounts initialized, nothing to act on")
            now = self._clock()
            report = CycleReport(resolve_stale=resolve_stale, run_current=run_current, rounds=rounds)
            report.stale_pools = [r.pool for r in rounds if r.is_stale(now)]
            for r in rounds:
                if r.pool in report.stale_pools:
                    logger.info(
                        "round_stale",
                        pool=r.pool,
                        deadline=r.deadline_iso(),
                        resolve=resolve_stale,
                    )
            if report.stale_pools and resolve_stale:
                for r in rounds:
                    if r.pool in report.stale_pools and not self._stop.is_set():
                        report.resolved[r.pool] = await self._resolve_round(r)
                self.reports.append(report)
                # One resolve attempt per staleness event, then process the current round
                resolve_stale, run_current = False, True
                continue
            break

        if run_current:
            for account in self._accounts:
                if self._stop.is_set():
                    break
                report.accounts.append(await self._run_for_account(account))
            logger.info(
                "cycle_accounts_done",
                accounts=len(report.accounts),
                staked=sum(1 for a in report.accounts if a.stake_signature),
                errors=sum(1 for a in report.accounts if a.error or a.claim_failures),
            )
        self.reports.append(report)
        return report

    async def _check_rounds(self) -> list[RoundState]:
        rounds: list[RoundState] = []
        last_error: BaseException | None = None
        pools = list(self._program.pools)
        for pool in pools:
            try:
                start_time = await retry_async(
                    lambda pool=pool: self._program.fetch_round_start_time(pool),
                    self._round_retry,
                    event="round_state_fetch",
                    sleep=self._sleep or asyncio.sleep,
                    pool=pool,
                )
            except Exception as e:
                last_error = e
                logger.error("round_state_fetch_failed", pool=pool, error=str(e))
                continue
            state = RoundState.from_start_time(pool, start_time, self._settings.min_round_duration_sec)
            logger.info(
                "round_next_start",
                pool=pool,
                deadline=state.deadline_iso(),
                remaining_sec=round(state.remaining(self._clock()), 3),
            )
            rounds.append(state)
            await self._pace(self._settings.rpc_read_delay_sec)

        if pools and not rounds:
            raise RoundStateUnavailable(pools, last_error)
        rounds.sort(key=lambda r: r.deadline, reverse=True)
        return rounds

    async def _resolve_round(self, state: RoundState) -> str | None:
        payer = self._accounts[0]
        logger.info("round_resolve_attempt", pool=state.pool, public_key=payer.public_key)
        try:
            operation = self._program.build_round_advance_operation(payer, state.pool)
            signature = await self._engine.deliver(operation)
        except Exception as e:
            logger.error("round_resolve_failed", pool=state.pool, error=str(e))
            return None
        finally:
            await self._pace(self._settings.rpc_write_delay_sec)
        logger.info("round_resolved", pool=state.pool, signature=signature)
        return signature

    async def _run_for_account(self, account: "Account") -> AccountOutcome:
        outcome = AccountOutcome(public_key=account.public_key)
        log = logger.bind(public_key=account.public_key)
        for pool in self._program.pools:
            if self._stop.is_set():
                return outcome
            log.info("account_claim", pool=pool)
            try:
                operation = self._program.build_claim_operation(account, pool)
                outcome.claims[pool] = await self._engine.deliver(operation)
            except Exception as e:
                outcome.claim_failures.append(pool)
                log.error("account_claim_failed", pool=pool, error=str(e))
            await self._pace(self._settings.rpc_write_delay_sec)

        try:
            balance = await self._program.fetch_token_balance(account)
        except Exception as e:
            outcome.error = f"balance: {e}"
            log.error("account_balance_failed", error=str(e))
            return outcome
        outcome.balance = balance or 0
        log.info("account_balance", amount=outcome.balance)
        if outcome.balance <= 0:
            log.info("account_empty_balance_skip")
            return outcome
        if self._stop.is_set():
            return outcome

        try:
            positions = await self._program.fetch_locked_positions(account)
            target = self._select(list(positions))
            if target is not None:
                outcome.action, outcome.position_id = ACTION_UPGRADE, target.position_id
                operation = self._program.build_upgrade_operation(account, outcome.balance, target.position_id)
            else:
                outcome.action = ACTION_STAKE
                operation = self._program.build_stake_operation(account, outcome.balance)
            log.info(
                "account_stake",
                action=outcome.action,
                position_id=outcome.position_id,
                amount=outcome.balance,
            )
            outcome.stake_signature = await self._engine.deliver(operation)
        except Exception as e:
            outcome.error = f"{outcome.action or 'stake'}: {e}"
            log.error("account_stake_failed", action=outcome.action, error=str(e))
        finally:
            await self._pace(self._settings.rpc_write_delay_sec)
        return outcome

    async def _pace(self, seconds: float | None) -> None:
        """Spacing between RPC calls; the public endpoint is rate limited."""
        if not seconds or seconds <= 0 or self._stop.is_set():
            return
        if self._sleep is not None:
            await self._sleep(seconds)
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
