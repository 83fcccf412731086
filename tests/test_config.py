import copy

import pytest
import yaml

from huntergraph.config import (
    DEFAULT_CONFIG,
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    load_config_file,
    load_runtime_config,
    set_runtime_config,
)
from huntergraph.storage import init_db


def test_bootstrap_creates_runtime_config(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    cfg = bootstrap_runtime_config(conn)
    assert cfg == DEFAULT_CONFIG


def test_get_runtime_config_after_set(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["graph"]["similarity_threshold"] = 0.65
    custom["ledger"]["tier_allowances"]["gold"] = 75
    set_runtime_config(conn, custom)

    cfg = get_runtime_config(conn)
    assert cfg["graph"]["similarity_threshold"] == 0.65
    config = load_runtime_config(conn)
    assert config.graph.similarity_threshold == 0.65
    assert config.ledger.tier_allowances["gold"] == 75


def test_set_runtime_config_rejects_invalid(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(ConfigError) as excinfo:
        set_runtime_config(conn, {"app": {"name": "Bad"}})
    assert "Invalid config.runtime" in str(excinfo.value)

    wrong_type = copy.deepcopy(DEFAULT_CONFIG)
    wrong_type["queue"]["dequeue_limit"] = "ten"
    with pytest.raises(ConfigError) as excinfo:
        set_runtime_config(conn, wrong_type)
    assert "config.runtime.queue.dequeue_limit must be an integer" in str(excinfo.value)


def test_bootstrap_reads_yaml_override(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yml"
    config_path.write_text(
        yaml.safe_dump({"mentions": {"created_by": "import-script"}}), encoding="utf-8"
    )
    monkeypatch.setenv("HG_CONFIG_PATH", str(config_path))
    conn = init_db(str(tmp_path / "state.sqlite3"))

    cfg = bootstrap_runtime_config(conn)
    assert cfg["mentions"]["created_by"] == "import-script"
    assert cfg["mentions"]["extraction_method"] == DEFAULT_CONFIG["mentions"]["extraction_method"]


def test_load_config_file_rejects_unknown_keys(tmp_path):
    config_path = tmp_path / "config.yml"
    config_path.write_text(yaml.safe_dump({"graph": {"colour": "red"}}), encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config_file(str(config_path))
    assert "unknown config.runtime.graph.colour" in str(excinfo.value)

    with pytest.raises(ConfigError):
        load_config_file(str(tmp_path / "missing.yml"))
