from __future__ import annotations

import json
from typing import Any

from .db import DBConn, connect_db
from .utils import json_dumps, utc_now_iso

COUNTED_TABLES = (
    "articles",
    "entities",
    "relationships",
    "business_partners",
    "article_business_mentions",
    "credit_usage_log",
    "content_queue",
)


def init_db(path: str) -> DBConn:
    return connect_db(path)


def get_setting(conn: Any, key: str, default: object) -> object:
    cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    if not row:
        return default
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return default


def set_setting(conn: Any, key: str, value: object) -> None:
    payload = json_dumps(value)
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, payload, now),
    )
    conn.commit()


def get_schema_version(conn: Any) -> str | None:
    if not _table_exists(conn, "schema_migrations"):
        return None
    row = conn.execute(
        "SELECT version FROM schema_migrations ORDER BY version DESC LIMIT 1"
    ).fetchone()
    return row[0] if row else None


def count_table(conn: Any, table: str) -> int:
    if table not in COUNTED_TABLES or not _table_exists(conn, table):
        return 0
    row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
    return int(row[0] or 0)


def health_check(conn: Any) -> dict[str, object]:
    conn.execute("SELECT COUNT(*) FROM articles").fetchone()
    return {
        "ok": True,
        "backend": getattr(conn, "backend", "unknown"),
        "schema_version": get_schema_version(conn),
    }


def get_db_stats(conn: Any) -> dict[str, object]:
    stats: dict[str, object] = {table: count_table(conn, table) for table in COUNTED_TABLES}
    row = conn.execute(
        "SELECT COALESCE(SUM(credits_remaining), 0), COALESCE(SUM(credits_purchased), 0) "
        "FROM business_partners"
    ).fetchone()
    stats["credits_remaining_total"] = int(row[0] or 0)
    stats["credits_purchased_total"] = int(row[1] or 0)
    cursor = conn.execute("SELECT status, COUNT(*) FROM content_queue GROUP BY status")
    stats["queue_by_status"] = {status: int(count) for status, count in cursor.fetchall()}
    stats["timestamp"] = utc_now_iso()
    return stats


def _table_exists(conn: Any, table: str) -> bool:
    if getattr(conn, "backend", "sqlite") == "postgres":
        cursor = conn.execute("SELECT to_regclass(?)", (f"public.{table}",))
        row = cursor.fetchone()
        return bool(row and row[0])
    cursor = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    )
    return cursor.fetchone() is not None
