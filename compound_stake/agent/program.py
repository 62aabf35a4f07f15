"""
Staking program adapter: the protocol-specific collaborator of the scheduler.

The adapter knows the staking program's accounts and instruction layouts; the
scheduler and delivery engine only see Operations, round start times, token
balances and LockedPosition records. The embedding system provides it through
STAKING_PROGRAM_FACTORY="package.module:callable"; the callable is invoked as
factory(settings=..., network=...) and must return a StakingProgram.
"""

from __future__ import annotations

import importlib
from typing import Any, Protocol, Sequence, runtime_checkable

from compound_stake.agent.accounts import Account
from compound_stake.core.exceptions import ConfigurationError
from compound_stake.delivery.models import Operation
from compound_stake.scheduler.positions import LockedPosition


@runtime_checkable
class StakingProgram(Protocol):
    # Staked-token pools that carry staking rounds, e.g. ("ADX", "ALP")
    pools: Sequence[str]

    async def fetch_round_start_time(self, pool: str) -> int: ...

    async def fetch_token_balance(self, account: Account) -> int | None: ...

    async def fetch_locked_positions(self, account: Account) -> Sequence[LockedPosition]: ...

    def build_claim_operation(self, account: Account, pool: str) -> Operation: ...

    def build_stake_operation(self, account: Account, amount: int) -> Operation: ...

    def build_upgrade_operation(self, account: Account, amount: int, position_id: int) -> Operation: ...

    def build_round_advance_operation(self, payer: Account, pool: str) -> Operation: ...


def load_program_factory(path: str) -> Any:
    """Resolve "package.module:callable". Raises ConfigurationError when unset or not importable."""
    if not path:
        raise ConfigurationError("STAKING_PROGRAM_FACTORY must be set (format: package.module:callable)")
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"STAKING_PROGRAM_FACTORY must look like package.module:callable, got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import staking program module {module_name!r}") from e
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"{path!r} is not a callable")
    return factory


def create_program(path: str, **kwargs: Any) -> StakingProgram:
    """Load the factory at path and build the adapter; it must expose pools and every StakingProgram method."""
    program = load_program_factory(path)(**kwargs)
    if not isinstance(program, StakingProgram):
        raise ConfigurationError(f"{path!r} did not return a StakingProgram")
    if not list(program.pools):
        raise ConfigurationError("Staking program exposes no pools")
    return program
