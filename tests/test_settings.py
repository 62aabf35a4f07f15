"""
Pytest tests for Settings: environment parsing, endpoint-tiered defaults and validation.
"""

from __future__ import annotations

import pytest

from compound_stake.config.env import DEFAULT_RPC_URL, is_public_rpc, mask_rpc_url
from compound_stake.config.settings import Settings
from compound_stake.core.exceptions import ConfigurationError


def test_defaults_public_endpoint():
    s = Settings()
    assert s.rpc_url == DEFAULT_RPC_URL
    assert s.is_public_rpc
    assert s.commitment == "confirmed"
    assert s.rebroadcast_interval_sec == 15.0
    assert s.rpc_read_delay_sec == 5.0
    assert s.rpc_write_delay_sec == 10.0
    assert s.max_resigns == 5
    assert s.schedule_ping_interval_sec == 600
    assert s.min_round_duration_sec == 21_600
    assert s.resolve_staking_rounds and s.run_current_round and s.schedule_next_rounds
    assert s.upgrade_selection == "smallest_max_locked"


def test_dedicated_endpoint_tier(monkeypatch):
    monkeypatch.setenv("RPC_URL", "https://rpc.example.com/?api-key=secret")
    s = Settings()
    assert not s.is_public_rpc
    assert s.rebroadcast_interval_sec == 5.0
    assert s.rpc_read_delay_sec == 0.5
    assert s.rpc_write_delay_sec == 1.0
    assert "secret" not in s.to_log_dict()["rpc_url"]


def test_rpc_url_precedence(monkeypatch):
    monkeypatch.setenv("SOLANA_RPC_URL", "https://solana.example.com")
    assert Settings().rpc_url == "https://solana.example.com"
    monkeypatch.setenv("RPC_URL", "https://rpc.example.com")
    assert Settings().rpc_url == "https://rpc.example.com"


def test_explicit_values_override_tier(monkeypatch):
    monkeypatch.setenv("REBROADCAST_INTERVAL_SEC", "2.5")
    monkeypatch.setenv("MAX_RESIGNS", "0")
    monkeypatch.setenv("REBROADCAST", "false")
    monkeypatch.setenv("SCHEDULE_NEXT_ROUNDS", "no")
    s = Settings()
    assert s.rebroadcast_interval_sec == 2.5
    assert s.max_resigns == 0
    assert s.rebroadcast is False
    assert s.schedule_next_rounds is False


def test_invalid_values_raise_configuration_error(monkeypatch):
    monkeypatch.setenv("MAX_RESIGNS", "many")
    with pytest.raises(ConfigurationError, match="MAX_RESIGNS"):
        Settings()
    monkeypatch.delenv("MAX_RESIGNS")
    monkeypatch.setenv("REBROADCAST", "maybe")
    with pytest.raises(ConfigurationError, match="REBROADCAST"):
        Settings()
    monkeypatch.delenv("REBROADCAST")
    with pytest.raises(ConfigurationError, match="SOLANA_COMMITMENT"):
        Settings(commitment="recent")
    with pytest.raises(ConfigurationError, match="UPGRADE_SELECTION"):
        Settings(upgrade_selection="largest")
    with pytest.raises(ConfigurationError, match="MAX_RESIGNS"):
        Settings(max_resigns=-1)


def test_secret_keys_path_required():
    with pytest.raises(ConfigurationError, match="WALLET_SECRET_KEYS_FILE_PATH"):
        Settings().secret_keys_path


def test_delivery_options_from_settings():
    s = Settings(rpc_url="http://127.0.0.1:8899", max_resigns=2, simulate_first=False)
    opts = s.delivery_options()
    assert opts.max_resigns == 2
    assert opts.simulate_first is False
    assert opts.rebroadcast_interval_sec == 5.0
    assert opts.settle_grace_sec == 1.0
    assert opts.commitment == "confirmed"


def test_rpc_url_helpers():
    assert is_public_rpc(DEFAULT_RPC_URL + "/")
    assert not is_public_rpc("https://mainnet.helius-rpc.com")
    assert mask_rpc_url("https://x.io/?api-key=abc") == "https://x.io/?api-key=***"
