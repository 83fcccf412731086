from __future__ import annotations

import argparse
import json
import logging
import os

from .config import (
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    get_state_db_path,
    load_runtime_config,
    set_runtime_config,
)
from .db import StoreHandles, open_store
from .errors import HunterGraphError
from .services import ledger_service, queue_service
from .storage import get_db_stats
from .utils import json_dumps, log_event


def _setup_logging() -> logging.Logger:
    # Logs go to stderr; stdout carries command output.
    level_name = os.environ.get("HG_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    return logging.getLogger("huntergraph")


def _open_store(args: argparse.Namespace) -> StoreHandles:
    if args.data_dir:
        os.environ["HG_DATA_DIR"] = args.data_dir
    store = open_store(get_state_db_path())
    bootstrap_runtime_config(store.admin or store.client)
    return store


def _print_json(value: object) -> None:
    print(json_dumps(value, indent=2))


def _parse_value(raw: str) -> object:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    store.close()
    log_event(logger, logging.INFO, "db_migrated", path=get_state_db_path())
    return 0


def _cmd_config_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        _print_json(get_runtime_config(store.client))
    finally:
        store.close()
    return 0


def _cmd_config_set(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        conn = store.admin or store.client
        cfg = get_runtime_config(conn)
        keys = args.key.split(".")
        target = cfg
        for key in keys[:-1]:
            if not isinstance(target.get(key), dict):
                raise ConfigError(f"unknown config section: {args.key}")
            target = target[key]
        target[keys[-1]] = _parse_value(args.value)
        set_runtime_config(conn, cfg)
    finally:
        store.close()
    log_event(logger, logging.INFO, "config_updated", key=args.key)
    return 0


def _cmd_queue_add(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        payload = {
            "title": args.title,
            "content": args.content,
            "source_url": args.source_url,
            "source_type": args.source_type,
            "priority": args.priority,
            "relevance_score": args.relevance_score,
            "scheduled_for": args.scheduled_for,
        }
        item = queue_service.enqueue(
            store.client,
            {key: value for key, value in payload.items() if value is not None},
            config=load_runtime_config(store.client),
        )
    finally:
        store.close()
    print(item.id)
    return 0


def _cmd_queue_next(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        items = queue_service.dequeue_next(
            store.client,
            limit=args.limit,
            claim=args.claim,
            config=load_runtime_config(store.client),
        )
    finally:
        store.close()
    _print_json(items)
    return 0


def _cmd_queue_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        items = queue_service.list_items(store.client, status=args.status, limit=args.limit)
    finally:
        store.close()
    for item in items:
        log_event(
            logger,
            logging.INFO,
            "queue_item",
            item_id=item.id,
            status=item.status,
            priority=item.priority,
            relevance_score=item.relevance_score,
            title=item.title,
        )
    log_event(logger, logging.INFO, "queue_listed", count=len(items))
    return 0


def _cmd_credits_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        balance = ledger_service.get_credits(
            store.client, args.partner_id, config=load_runtime_config(store.client)
        )
    finally:
        store.close()
    _print_json(balance)
    return 0


def _cmd_credits_debit(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        partner = ledger_service.debit_credits(
            store.require_admin(),
            args.partner_id,
            args.amount,
            args.description,
            mention_id=args.mention_id,
        )
    finally:
        store.close()
    print(partner.credits_remaining)
    return 0


def _cmd_credits_topup(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        partner = ledger_service.top_up_credits(
            store.require_admin(), args.partner_id, args.amount, args.description
        )
    finally:
        store.close()
    print(partner.credits_remaining)
    return 0


def _cmd_credits_reconcile(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        result = ledger_service.reconcile(store.client, args.partner_id)
    finally:
        store.close()
    _print_json(result)
    return 0 if result.balanced else 3


def _cmd_stats(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(args)
    try:
        _print_json(get_db_stats(store.client))
    finally:
        store.close()
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    if args.data_dir:
        os.environ["HG_DATA_DIR"] = args.data_dir
    log_event(logger, logging.INFO, "api_starting", host=args.host, port=args.port)
    uvicorn.run("huntergraph.api:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="huntergraph", description="HunterGraph CLI")
    parser.add_argument(
        "--data-dir",
        dest="data_dir",
        default=None,
        help="Directory holding state.sqlite3 (defaults to HG_DATA_DIR or /data)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    config_parser = subparsers.add_parser("config", help="Runtime configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)
    config_show = config_subparsers.add_parser("show", help="Print the runtime config")
    config_show.set_defaults(func=_cmd_config_show)
    config_set = config_subparsers.add_parser("set", help="Set one dotted config key")
    config_set.add_argument("key", help="Dotted path, e.g. graph.similarity_threshold")
    config_set.add_argument("value", help="JSON value; bare words are taken as strings")
    config_set.set_defaults(func=_cmd_config_set)

    queue_parser = subparsers.add_parser("queue", help="Content queue commands")
    queue_subparsers = queue_parser.add_subparsers(dest="queue_command", required=True)
    queue_add = queue_subparsers.add_parser("add", help="Enqueue content")
    queue_add.add_argument("--title", required=True)
    queue_add.add_argument("--content", required=True)
    queue_add.add_argument("--source-url", dest="source_url", default=None)
    queue_add.add_argument("--source-type", dest="source_type", default=None)
    queue_add.add_argument("--priority", default=None)
    queue_add.add_argument("--relevance-score", dest="relevance_score", type=float, default=None)
    queue_add.add_argument("--scheduled-for", dest="scheduled_for", default=None)
    queue_add.set_defaults(func=_cmd_queue_add)
    queue_next = queue_subparsers.add_parser("next", help="Show the next eligible items")
    queue_next.add_argument("--limit", type=int, default=None)
    queue_next.add_argument(
        "--claim", action="store_true", help="Move returned items to processing"
    )
    queue_next.set_defaults(func=_cmd_queue_next)
    queue_list = queue_subparsers.add_parser("list", help="List queue items")
    queue_list.add_argument("--status", default=None)
    queue_list.add_argument("--limit", type=int, default=50)
    queue_list.set_defaults(func=_cmd_queue_list)

    credits_parser = subparsers.add_parser("credits", help="Partner credit ledger")
    credits_subparsers = credits_parser.add_subparsers(dest="credits_command", required=True)
    credits_show = credits_subparsers.add_parser("show", help="Show a partner balance")
    credits_show.add_argument("partner_id")
    credits_show.set_defaults(func=_cmd_credits_show)
    credits_debit = credits_subparsers.add_parser("debit", help="Debit partner credits")
    credits_debit.add_argument("partner_id")
    credits_debit.add_argument("amount", type=int)
    credits_debit.add_argument("--description", default=None)
    credits_debit.add_argument("--mention-id", dest="mention_id", default=None)
    credits_debit.set_defaults(func=_cmd_credits_debit)
    credits_topup = credits_subparsers.add_parser("topup", help="Add purchased credits")
    credits_topup.add_argument("partner_id")
    credits_topup.add_argument("amount", type=int)
    credits_topup.add_argument("--description", default=None)
    credits_topup.set_defaults(func=_cmd_credits_topup)
    credits_reconcile = credits_subparsers.add_parser(
        "reconcile", help="Compare the balance with the usage log"
    )
    credits_reconcile.add_argument("partner_id")
    credits_reconcile.set_defaults(func=_cmd_credits_reconcile)

    stats_parser = subparsers.add_parser("stats", help="Print store statistics")
    stats_parser.set_defaults(func=_cmd_stats)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8080)
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    try:
        return args.func(args, logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    except HunterGraphError as exc:
        log_event(logger, logging.ERROR, exc.code, error=exc.message, **exc.context)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
