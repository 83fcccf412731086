from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml

from .models import ENTITY_TYPES
from .storage import get_setting, set_setting


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str
    timezone: str


@dataclass(frozen=True)
class GraphConfig:
    similarity_threshold: float
    similarity_limit: int
    default_relationship_strength: float
    max_traversal_depth: int
    list_limit: int
    entity_types: list[str]


@dataclass(frozen=True)
class MentionsConfig:
    default_relevance_score: float
    default_mention_type: str
    created_by: str
    extraction_method: str
    list_limit: int


@dataclass(frozen=True)
class LedgerConfig:
    tier_allowances: dict[str, int]
    usage_history_limit: int


@dataclass(frozen=True)
class QueueConfig:
    default_source_type: str
    default_priority: str
    dequeue_limit: int
    max_dequeue_limit: int
    added_by: str


@dataclass(frozen=True)
class ArticlesConfig:
    page_size: int
    max_page_size: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    graph: GraphConfig
    mentions: MentionsConfig
    ledger: LedgerConfig
    queue: QueueConfig
    articles: ArticlesConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "HunterGraph",
        "timezone": "UTC",
    },
    "graph": {
        "similarity_threshold": 0.8,
        "similarity_limit": 10,
        "default_relationship_strength": 0.5,
        "max_traversal_depth": 3,
        "list_limit": 100,
        "entity_types": list(ENTITY_TYPES),
    },
    "mentions": {
        "default_relevance_score": 0.5,
        "default_mention_type": "standard",
        "created_by": "n8n-workflow",
        "extraction_method": "ai",
        "list_limit": 50,
    },
    "ledger": {
        "tier_allowances": {
            "bronze": 10,
            "silver": 25,
            "gold": 50,
            "platinum": 100,
        },
        "usage_history_limit": 50,
    },
    "queue": {
        "default_source_type": "rss",
        "default_priority": "medium",
        "dequeue_limit": 10,
        "max_dequeue_limit": 100,
        "added_by": "n8n-workflow",
    },
    "articles": {
        "page_size": 20,
        "max_page_size": 100,
    },
}

CONFIG_KEY = "config.runtime"


def get_data_dir() -> str:
    return os.environ.get("HG_DATA_DIR", "/data")


def get_state_db_path() -> str:
    return os.path.join(get_data_dir(), "state.sqlite3")


def load_config_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file is not valid YAML: {path}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("config file must contain a mapping")
    merged = _deep_merge(_deep_copy(DEFAULT_CONFIG), raw)
    errors = validate_runtime_config(merged)
    if errors:
        raise ConfigError("Invalid config file: " + "; ".join(errors))
    return merged


def bootstrap_runtime_config(conn) -> dict[str, Any]:
    cfg = get_setting(conn, CONFIG_KEY, None)
    if cfg is None:
        config_path = os.environ.get("HG_CONFIG_PATH")
        initial = load_config_file(config_path) if config_path else _deep_copy(DEFAULT_CONFIG)
        set_setting(conn, CONFIG_KEY, initial)
        cfg = get_setting(conn, CONFIG_KEY, None)
    if not isinstance(cfg, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return cfg


def get_runtime_config(conn) -> dict[str, Any]:
    cfg = bootstrap_runtime_config(conn)
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return cfg


def set_runtime_config(conn, cfg: dict[str, Any]) -> None:
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(cfg))


def load_runtime_config(conn) -> Config:
    cfg = get_runtime_config(conn)
    return build_config(cfg)


def default_config() -> Config:
    return build_config(DEFAULT_CONFIG)


def validate_runtime_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config.runtime", errors)
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        for item in value:
            if not isinstance(item, str):
                errors.append(f"{path} must be a list of strings")
                break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg.get("app") or {}
    graph_cfg = cfg.get("graph") or {}
    mentions_cfg = cfg.get("mentions") or {}
    ledger_cfg = cfg.get("ledger") or {}
    queue_cfg = cfg.get("queue") or {}
    articles_cfg = cfg.get("articles") or {}

    app = AppConfig(
        name=str(app_cfg.get("name")),
        timezone=str(app_cfg.get("timezone")),
    )

    graph = GraphConfig(
        similarity_threshold=float(graph_cfg.get("similarity_threshold")),
        similarity_limit=int(graph_cfg.get("similarity_limit")),
        default_relationship_strength=float(graph_cfg.get("default_relationship_strength")),
        max_traversal_depth=int(graph_cfg.get("max_traversal_depth")),
        list_limit=int(graph_cfg.get("list_limit")),
        entity_types=[str(item).lower() for item in graph_cfg.get("entity_types")],
    )

    mentions = MentionsConfig(
        default_relevance_score=float(mentions_cfg.get("default_relevance_score")),
        default_mention_type=str(mentions_cfg.get("default_mention_type")),
        created_by=str(mentions_cfg.get("created_by")),
        extraction_method=str(mentions_cfg.get("extraction_method")),
        list_limit=int(mentions_cfg.get("list_limit")),
    )

    ledger = LedgerConfig(
        tier_allowances={
            str(tier): int(allowance)
            for tier, allowance in (ledger_cfg.get("tier_allowances") or {}).items()
        },
        usage_history_limit=int(ledger_cfg.get("usage_history_limit")),
    )

    queue = QueueConfig(
        default_source_type=str(queue_cfg.get("default_source_type")),
        default_priority=str(queue_cfg.get("default_priority")),
        dequeue_limit=int(queue_cfg.get("dequeue_limit")),
        max_dequeue_limit=int(queue_cfg.get("max_dequeue_limit")),
        added_by=str(queue_cfg.get("added_by")),
    )

    articles = ArticlesConfig(
        page_size=int(articles_cfg.get("page_size")),
        max_page_size=int(articles_cfg.get("max_page_size")),
    )

    return Config(
        app=app,
        graph=graph,
        mentions=mentions,
        ledger=ledger,
        queue=queue,
        articles=articles,
    )


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
