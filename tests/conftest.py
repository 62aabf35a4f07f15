"""
Pytest fixtures for compound_stake tests: in-memory ledger network, staking
program and delivery engine fakes, a controllable clock, and clean settings.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from compound_stake.core.exceptions import DeliveryExhausted
from compound_stake.delivery.models import LivenessToken, Operation, SignedOperation, SimulationResult

ENV_VARS = (
    "RPC_URL",
    "SOLANA_RPC_URL",
    "SOLANA_COMMITMENT",
    "WALLET_SECRET_KEYS_FILE_PATH",
    "STAKING_PROGRAM_FACTORY",
    "RESOLVE_STAKING_ROUNDS",
    "RUN_CURRENT_ROUND",
    "SCHEDULE_NEXT_ROUNDS",
    "SCHEDULE_PING_INTERVAL_SEC",
    "ROUND_MIN_DURATION_SECONDS",
    "MAX_RESIGNS",
    "REBROADCAST",
    "REBROADCAST_INTERVAL_SEC",
    "SIMULATE_FIRST",
    "RPC_READ_DELAY_SEC",
    "RPC_WRITE_DELAY_SEC",
    "UPGRADE_SELECTION",
    "DEBUG",
    "LOG_LEVEL",
    "LOG_FORMAT",
)

NOW = 1_700_000_000.0


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Settings read os.environ; start every test from an empty configuration."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings():
    """Dedicated-endpoint settings with pacing disabled."""
    from compound_stake.config.settings import Settings

    return Settings(
        rpc_url="http://127.0.0.1:8899",
        rpc_read_delay_sec=0,
        rpc_write_delay_sec=0,
        rebroadcast_interval_sec=0,
        schedule_ping_interval_sec=600,
    )


@pytest.fixture
def make_account():
    from solders.keypair import Keypair

    from compound_stake.agent.accounts import Account

    def _make() -> Account:
        return Account(Keypair())

    return _make


class FakeClock:
    """Wall clock that only moves when sleep() is awaited."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now
        self.sleeps: list[float] = []
        self.on_sleep: Callable[["FakeClock"], None] | None = None

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(self)
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


class FakeNetwork:
    """
    LedgerNetwork in memory. Every liveness token has a new blockhash; every
    get_block_height() call advances the height by one block.

    confirm_when(network, signature) -> True (confirmed), False (failed), None (pending).
    """

    def __init__(
        self,
        *,
        window: int = 1_000,
        confirm_when: Callable[["FakeNetwork", str], bool | None] | None = None,
        simulations: list[SimulationResult] | None = None,
    ) -> None:
        self.height = 1_000
        self.window = window
        self.confirm_when = confirm_when or (lambda net, sig: None)
        self.simulations = list(simulations or [])
        self.tokens: list[LivenessToken] = []
        self.signed: list[Operation] = []
        self.sent: list[bytes] = []
        self.simulate_calls = 0
        self.height_error: Exception | None = None
        self.commitments: list[str | None] = []
        self._signatures: dict[bytes, str] = {}

    async def get_liveness_token(self) -> LivenessToken:
        token = LivenessToken(
            blockhash=f"hash-{len(self.tokens) + 1}",
            last_valid_height=self.height + self.window,
        )
        self.tokens.append(token)
        return token

    def sign(self, operation: Operation, token: LivenessToken) -> SignedOperation:
        self.signed.append(operation)
        signature = f"{operation.name}:{token.blockhash}:{operation.compute_unit_limit}"
        serialized = signature.encode()
        self._signatures[serialized] = signature
        return SignedOperation(serialized=serialized, signature=signature)

    async def simulate(self, serialized: bytes) -> SimulationResult:
        self.simulate_calls += 1
        if self.simulations:
            return self.simulations.pop(0)
        return SimulationResult(ok=True)

    async def broadcast(self, serialized: bytes) -> str:
        self.sent.append(serialized)
        return self._signatures[serialized]

    def send_count(self, signature: str) -> int:
        return sum(1 for raw in self.sent if raw == signature.encode())

    async def confirm(self, signature: str, token: LivenessToken, commitment: str | None = None) -> bool:
        self.commitments.append(commitment)
        while True:
            decision = self.confirm_when(self, signature)
            if decision is not None:
                return decision
            await asyncio.sleep(0.001)

    async def get_block_height(self) -> int:
        if self.height_error is not None:
            raise self.height_error
        self.height += 1
        return self.height

    async def fetch_token_balance(self, token_account: Any) -> int | None:
        return None


@pytest.fixture
def network():
    return FakeNetwork()


class FakeProgram:
    """StakingProgram in memory; built operations are recorded as (name, public_key, detail)."""

    def __init__(
        self,
        pools: tuple[str, ...] = ("ADX",),
        start_times: dict[str, float] | None = None,
        balances: dict[str, int | None] | None = None,
        positions: dict[str, list] | None = None,
    ) -> None:
        self.pools = pools
        self.start_times = dict(start_times or {})
        self.balances = dict(balances or {})
        self.positions = dict(positions or {})
        self.failing_pools: set[str] = set()
        self.round_fetches = 0
        self.built: list[tuple[str, str, Any]] = []

    async def fetch_round_start_time(self, pool: str) -> int:
        self.round_fetches += 1
        if pool in self.failing_pools:
            raise ConnectionError(f"round account for {pool} unreachable")
        return self.start_times[pool]

    async def fetch_token_balance(self, account) -> int | None:
        return self.balances.get(account.public_key)

    async def fetch_locked_positions(self, account) -> list:
        return self.positions.get(account.public_key, [])

    def _operation(self, name: str, account, detail: Any) -> Operation:
        self.built.append((name, account.public_key, detail))
        return Operation(name=name, payer=account.keypair, instructions=(detail,))

    def build_claim_operation(self, account, pool: str) -> Operation:
        return self._operation("claim", account, pool)

    def build_stake_operation(self, account, amount: int) -> Operation:
        return self._operation("stake", account, amount)

    def build_upgrade_operation(self, account, amount: int, position_id: int) -> Operation:
        return self._operation("upgrade", account, (amount, position_id))

    def build_round_advance_operation(self, payer, pool: str) -> Operation:
        return self._operation("round_advance", payer, pool)

    def names(self) -> list[str]:
        return [name for name, _, _ in self.built]


class FakeEngine:
    """DeliveryEngine stand-in: confirms everything except operation names in failing."""

    def __init__(self, on_deliver: Callable[[Operation], None] | None = None) -> None:
        self.delivered: list[Operation] = []
        self.failing: set[str] = set()
        self.on_deliver = on_deliver

    async def deliver(self, operation: Operation, options: Any = None) -> str:
        self.delivered.append(operation)
        if self.on_deliver is not None:
            self.on_deliver(operation)
        if operation.name in self.failing:
            raise DeliveryExhausted(operation.name, [f"{operation.name}-sig-{len(self.delivered)}"])
        return f"{operation.name}-sig-{len(self.delivered)}"


@pytest.fixture
def program():
    return FakeProgram(start_times={"ADX": NOW - 3_600})


@pytest.fixture
def fake_engine():
    return FakeEngine()
