from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from chaoswatch.config import Settings
from chaoswatch.domain.contracts import ZERO_ADDRESS


def test_defaults_point_at_the_public_testnet_deployment() -> None:
    settings = Settings()

    assert settings.rpc_url == "https://testnet-rpc.monad.xyz"
    assert settings.chain_id == 10143
    assert settings.lookback_blocks == 5000
    assert settings.activity_max_items == 200
    assert settings.dedup_max_ids == 2000
    assert settings.feed_max_items == 60
    assert settings.avg_block_seconds == 0.4
    addresses = settings.contract_addresses()
    assert addresses.chaos_token == "0xf9b40cd538d391e2437b53fb043cb47a61a02bc0"
    assert all(addresses.deployed(name) for name in addresses.as_dict())


def test_addresses_are_normalized_to_lowercase() -> None:
    settings = Settings(CHAOS_TOKEN_ADDRESS="0xF9B40CD538D391E2437B53FB043CB47A61A02BC0")

    assert settings.chaos_token_address == "0xf9b40cd538d391e2437b53fb043cb47a61a02bc0"


def test_blank_address_means_not_deployed() -> None:
    settings = Settings(SHIELD_MANAGER_ADDRESS="  ")

    assert settings.shield_manager_address == ZERO_ADDRESS
    assert not settings.contract_addresses().deployed("shield_manager")


def test_malformed_address_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(RIG_FACTORY_ADDRESS="0x1234")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"ACTIVITY_POLL_SECONDS": 0},
        {"FLUSH_INTERVAL_SECONDS": -1},
        {"LOOKBACK_BLOCKS": -5},
        {"FEED_MAX_ITEMS": 0},
        {"AVG_BLOCK_SECONDS": 0},
        {"RPC_URL": "ftp://example.com"},
        {"OBSERVABILITY_METRICS_EXPORTER": "statsd"},
        {"ACTIVITY_MAX_ITEMS": 300, "DEDUP_MAX_IDS": 299},
    ],
)
def test_invalid_settings_are_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        Settings(**kwargs)


def test_url_trailing_slash_is_stripped_and_exporter_normalized() -> None:
    settings = Settings(
        API_URL="https://api.example.com/",
        OBSERVABILITY_METRICS_EXPORTER=" OTLP ",
    )

    assert settings.api_url == "https://api.example.com"
    assert settings.observability_metrics_exporter == "otlp"


def test_environment_overrides_defaults(monkeypatch) -> None:
    monkeypatch.setenv("LOOKBACK_BLOCKS", "10")
    monkeypatch.setenv("RPC_BATCHING", "false")

    settings = Settings()

    assert settings.lookback_blocks == 10
    assert settings.rpc_batching is False


def test_env_file_is_read(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("MAX_AGENTS=25\nSOCIAL_FEED_COUNT=5\n", encoding="utf-8")

    settings = Settings(_env_file=str(env_file))

    assert settings.max_agents == 25
    assert settings.social_feed_count == 5


def test_state_db_path_is_isolated_per_test() -> None:
    assert Settings().state_db_path.endswith(".sqlite")
