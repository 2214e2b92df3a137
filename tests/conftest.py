from __future__ import annotations

import os
from pathlib import Path

import pytest

from chaoswatch.config import Settings


@pytest.fixture(autouse=True)
def isolate_settings_from_host_env(monkeypatch: pytest.MonkeyPatch):
    original_env_file = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    settings_env_keys: set[str] = set()
    for field in Settings.model_fields.values():
        if isinstance(field.alias, str):
            settings_env_keys.add(field.alias)

    for key in list(os.environ):
        if key in settings_env_keys or key in {"HTTPX_LOG_LEVEL", "HTTPCORE_LOG_LEVEL"}:
            monkeypatch.delenv(key, raising=False)

    yield

    Settings.model_config["env_file"] = original_env_file


@pytest.fixture(autouse=True)
def isolate_default_state_db_per_test(
    isolate_settings_from_host_env: None,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    request: pytest.FixtureRequest,
) -> None:
    del isolate_settings_from_host_env
    worker_id = os.getenv("PYTEST_XDIST_WORKER", "gw0")
    test_slug = request.node.nodeid.replace(os.sep, "_").replace("/", "_").replace("::", "_")
    db_name = f"{worker_id}-{test_slug}.sqlite"
    monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / db_name))
