"""
Test settings validation and contract configuration.
"""

import json

import pytest
from pydantic import ValidationError

from chain_watcher.core.config import DatabaseConfig, Settings, WatchedContract
from chain_watcher.core.exceptions import ConfigurationError


TRANSFER_ABI = {"type": "event", "name": "Transfer", "anonymous": False, "inputs": []}


def test_defaults():
    config = Settings(_env_file=None)

    assert config.required_confirmations == 6
    assert config.poll_interval_ms == 5000
    assert config.starting_block == 0


def test_log_level_is_normalized():
    assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"


@pytest.mark.parametrize(
    "overrides",
    [
        {"environment": "qa"},
        {"log_level": "verbose"},
        {"required_confirmations": -1},
        {"starting_block": -5},
        {"poll_interval_ms": 0},
        {"fetch_batch_size": 0},
    ],
)
def test_invalid_settings(overrides):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_contract_abi_loaded_from_artifact(tmp_path):
    artifact = tmp_path / "Token.json"
    artifact.write_text(json.dumps({"abi": [TRANSFER_ABI, {"type": "function", "name": "transfer"}]}))

    contract = WatchedContract(name="token", address="0x" + "11" * 20, abi_file=str(artifact))

    assert contract.event_abis == [TRANSFER_ABI]


def test_contracts_file(tmp_path):
    contracts_file = tmp_path / "contracts.json"
    contracts_file.write_text(json.dumps([
        {"name": "campaign", "address": "0x" + "22" * 20, "abi": [TRANSFER_ABI]},
    ]))
    config = Settings(
        _env_file=None,
        contracts_file=str(contracts_file),
        watched_contracts=[{"name": "token", "address": "0x" + "11" * 20}],
    )

    assert [c.name for c in config.get_watched_contracts()] == ["token", "campaign"]


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db/events", "postgresql+asyncpg://u:p@db/events"),
        ("sqlite:///events.db", "sqlite+aiosqlite:///events.db"),
        ("sqlite+aiosqlite:///events.db", "sqlite+aiosqlite:///events.db"),
    ],
)
def test_database_url_uses_async_driver(url, expected):
    assert DatabaseConfig.get_database_url(url) == expected


def test_sqlite_engine_has_no_pool_options():
    assert DatabaseConfig.get_engine_config("sqlite:///events.db") == {}
    assert "pool_size" in DatabaseConfig.get_engine_config("postgresql://u:p@db/events")


def test_missing_contracts_file(tmp_path):
    config = Settings(_env_file=None, contracts_file=str(tmp_path / "contracts.json"))

    with pytest.raises(ConfigurationError) as exc_info:
        config.get_watched_contracts()

    assert exc_info.value.details["contracts_file"].endswith("contracts.json")
