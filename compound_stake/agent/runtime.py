"""
Long-running compounding agent.

Loads settings and signing accounts, builds the Solana network adapter, the
staking program adapter and the delivery engine, then lets the round
scheduler run until SIGINT / SIGTERM / SIGUSR2 (or once, when
SCHEDULE_NEXT_ROUNDS is false). Safe shutdown: the stop event ends the ping
wait and any rebroadcast loop, and the RPC client is closed.

Usage: python -m compound_stake  (or the compound-stake console script)
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any

from compound_stake.agent.accounts import load_accounts
from compound_stake.agent.program import create_program
from compound_stake.config import Settings, get_settings
from compound_stake.core.exceptions import ConfigurationError, NoAccountsConfigured, RoundStateUnavailable
from compound_stake.delivery.engine import DeliveryEngine
from compound_stake.delivery.network import SolanaLedgerNetwork
from compound_stake.logging import configure_structlog, get_logger
from compound_stake.scheduler.engine import RoundScheduler

logger = get_logger(__name__)

SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM", "SIGUSR2")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def request_shutdown(name: str) -> None:
        logger.info("runtime_shutdown_signal", signal=name)
        stop_event.set()

    for name in SHUTDOWN_SIGNALS:
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, request_shutdown, name)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows or not the main thread
            pass


async def run_agent(settings: Settings, *, network: Any = None, program: Any = None) -> int:
    """Build the collaborators and run the scheduler. Returns the process exit code."""
    accounts = load_accounts(settings.secret_keys_path)
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    own_network = network is None
    if network is None:
        network = SolanaLedgerNetwork(settings.rpc_url, commitment=settings.commitment)
    try:
        if program is None:
            program = create_program(settings.staking_program_factory, settings=settings, network=network)
        engine = DeliveryEngine(network, settings.delivery_options(), stop_event=stop_event)
        scheduler = RoundScheduler(settings, program, engine, accounts, stop_event=stop_event)
        logger.info(
            "runtime_agent_started",
            account_count=len(accounts),
            pools=list(program.pools),
            **settings.to_log_dict(),
        )
        try:
            await scheduler.run_forever()
        except NoAccountsConfigured:
            logger.info("runtime_no_accounts", message="No accounts initialized, exiting")
            return 0
        logger.info("runtime_agent_stopped", stopped_by_signal=stop_event.is_set())
        return 0
    finally:
        if own_network:
            await network.close()


def main() -> int:
    """
    CLI entrypoint: exit 0 on clean shutdown, 1 on configuration errors, on
    round state unreachable at the first check, or on any other fatal error.
    """
    try:
        settings = get_settings()
        # .env is loaded now; LOG_LEVEL / LOG_FORMAT may have changed since import
        configure_structlog(logging.DEBUG if settings.debug else None)
        return asyncio.run(run_agent(settings))
    except KeyboardInterrupt:
        logger.info("runtime_shutdown_signal", signal="SIGINT")
        return 0
    except ConfigurationError as e:
        logger.error("runtime_config_error", error=str(e))
        return 1
    except RoundStateUnavailable as e:
        logger.error("runtime_round_state_unavailable", pools=e.pools, error=str(e))
        return 1
    except Exception as e:
        logger.exception("runtime_fatal", error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
