"""
Pytest tests for the agent runtime: wiring, exit codes and configuration errors.
"""

from __future__ import annotations

import asyncio
import logging
import time

import base58
import pytest
from conftest import NOW, FakeNetwork, FakeProgram
from solders.keypair import Keypair

from compound_stake.agent import runtime
from compound_stake.agent.program import create_program, load_program_factory
from compound_stake.config.settings import Settings
from compound_stake.core.exceptions import ConfigurationError, RoundStateUnavailable
from compound_stake.core.retry import RetryPolicy
from compound_stake.logging import configure_structlog, current_settings
from compound_stake.scheduler import engine as scheduler_engine


def _settings(keys_path, **overrides) -> Settings:
    values = dict(
        rpc_url="http://127.0.0.1:8899",
        wallet_secret_keys_file_path=str(keys_path),
        rpc_read_delay_sec=0,
        rpc_write_delay_sec=0,
        rebroadcast_interval_sec=0,
        schedule_next_rounds=False,
    )
    values.update(overrides)
    return Settings(**values)


def test_single_cycle_exits_zero(tmp_path):
    """Scheduling disabled: one cycle runs through the real delivery engine, exit 0."""
    kp = Keypair()
    keys = tmp_path / "keys.txt"
    keys.write_text(base58.b58encode(bytes(kp)).decode() + "\n", encoding="utf-8")
    program = FakeProgram(start_times={"ADX": time.time() - 60}, balances={str(kp.pubkey()): 42})
    net = FakeNetwork(confirm_when=lambda n, sig: True)

    code = asyncio.run(runtime.run_agent(_settings(keys), network=net, program=program))

    assert code == 0
    assert program.names() == ["claim", "stake"]
    assert len(net.sent) >= 2


def test_no_accounts_exits_zero(tmp_path):
    keys = tmp_path / "keys.txt"
    keys.write_text("# empty\n", encoding="utf-8")
    program = FakeProgram(start_times={"ADX": NOW})

    code = asyncio.run(runtime.run_agent(_settings(keys), network=FakeNetwork(), program=program))

    assert code == 0
    assert program.built == []


def test_main_missing_keys_file_exits_one(monkeypatch):
    monkeypatch.setenv("RPC_URL", "http://127.0.0.1:8899")
    assert runtime.main() == 1


def test_main_unexpected_error_exits_one(monkeypatch):
    async def boom(settings):
        raise RuntimeError("boom")

    monkeypatch.setattr(runtime, "run_agent", boom)
    assert runtime.main() == 1


def make_program(settings=None, network=None):
    return FakeProgram(start_times={"ADX": NOW})


def not_a_program(settings=None, network=None):
    return object()


def test_create_program_from_factory_path():
    program = create_program("test_runtime:make_program", settings=None, network=None)
    assert list(program.pools) == ["ADX"]


def test_program_factory_errors():
    with pytest.raises(ConfigurationError, match="must be set"):
        load_program_factory("")
    with pytest.raises(ConfigurationError, match="package.module:callable"):
        load_program_factory("no_colon")
    with pytest.raises(ConfigurationError, match="Cannot import"):
        load_program_factory("compound_stake_missing_module:factory")
    with pytest.raises(ConfigurationError, match="not a callable"):
        load_program_factory("test_runtime:NOW")
    with pytest.raises(ConfigurationError, match="did not return a StakingProgram"):
        create_program("test_runtime:not_a_program")


def unreachable_program(settings=None, network=None):
    program = FakeProgram()
    program.failing_pools.add("ADX")
    return program


def _write_keys(tmp_path):
    keys = tmp_path / "keys.txt"
    keys.write_text(base58.b58encode(bytes(Keypair())).decode() + "\n", encoding="utf-8")
    return keys


def test_round_state_unreachable_on_first_check_propagates(tmp_path, monkeypatch):
    monkeypatch.setattr(scheduler_engine, "ROUND_FETCH_RETRY", RetryPolicy(attempts=1))
    program = unreachable_program()

    with pytest.raises(RoundStateUnavailable):
        asyncio.run(runtime.run_agent(_settings(_write_keys(tmp_path)), network=FakeNetwork(), program=program))

    assert program.built == []


def test_main_round_state_unreachable_exits_one(tmp_path, monkeypatch):
    """Every pool unreadable on the first check: main() exits 1 even with scheduling on."""
    monkeypatch.setattr(scheduler_engine, "ROUND_FETCH_RETRY", RetryPolicy(attempts=1))
    monkeypatch.setenv("RPC_URL", "http://127.0.0.1:8899")
    monkeypatch.setenv("WALLET_SECRET_KEYS_FILE_PATH", str(_write_keys(tmp_path)))
    monkeypatch.setenv("STAKING_PROGRAM_FACTORY", "test_runtime:unreachable_program")
    monkeypatch.setenv("SCHEDULE_NEXT_ROUNDS", "true")
    saved = current_settings()
    try:
        assert runtime.main() == 1
    finally:
        configure_structlog(*saved)


def test_main_applies_log_settings_loaded_with_settings(tmp_path, monkeypatch):
    """LOG_LEVEL / LOG_FORMAT that only appear while settings load (.env) take effect."""

    def load_settings():
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        monkeypatch.setenv("LOG_FORMAT", "console")
        return _settings(tmp_path / "keys.txt")

    async def finished(settings):
        return 0

    monkeypatch.setattr(runtime, "get_settings", load_settings)
    monkeypatch.setattr(runtime, "run_agent", finished)
    saved = current_settings()
    try:
        assert runtime.main() == 0
        assert current_settings() == (logging.ERROR, "console")
    finally:
        configure_structlog(*saved)
