from __future__ import annotations

import pytest

from huntergraph.db import open_store

_ENV_VARS = (
    "HG_DB_URL",
    "HG_DB_ADMIN_URL",
    "HG_ADMIN_TOKEN",
    "HG_CONFIG_PATH",
    "HG_LOG_FILE",
    "HG_LOG_LEVELS",
)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HG_DATA_DIR", str(tmp_path / "data"))


@pytest.fixture
def store(tmp_path):
    handles = open_store(str(tmp_path / "state.sqlite3"))
    yield handles
    handles.close()
