from __future__ import annotations

import argparse
import os
import sqlite3
from typing import Iterable

# Parents before children so foreign keys resolve on insert.
TABLE_ORDER = (
    "settings",
    "entities",
    "relationships",
    "articles",
    "business_partners",
    "article_business_mentions",
    "credit_usage_log",
    "content_queue",
)
VECTOR_COLUMNS = {("entities", "embedding")}


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--sqlite",
        default=os.path.join(os.environ.get("HG_DATA_DIR", "/data"), "state.sqlite3"),
    )
    parser.add_argument(
        "--pg-url",
        default=os.environ.get("HG_DB_ADMIN_URL") or os.environ.get("HG_DB_URL", ""),
    )
    return parser.parse_args()


def _table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def _chunked(rows: Iterable[tuple], size: int = 500) -> Iterable[list[tuple]]:
    batch: list[tuple] = []
    for row in rows:
        batch.append(row)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def _insert_sql(table: str, columns: list[str]) -> str:
    placeholders = ", ".join(
        "CAST(%s AS vector)" if (table, column) in VECTOR_COLUMNS else "%s"
        for column in columns
    )
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        "ON CONFLICT DO NOTHING"
    )


def main() -> int:
    args = _parse_args()
    if not args.pg_url:
        raise SystemExit("HG_DB_URL is required for Postgres migration")

    try:
        import psycopg
    except ImportError as exc:
        raise SystemExit("psycopg is required for Postgres migration") from exc

    from huntergraph.db import ROLE_ADMIN, connect_db

    # Creates the target schema through the regular migration path.
    connect_db(args.sqlite, role=ROLE_ADMIN, url=args.pg_url).close()

    sqlite_conn = sqlite3.connect(args.sqlite)
    pg_conn = psycopg.connect(args.pg_url)
    pg_conn.autocommit = False

    for table in TABLE_ORDER:
        columns = _table_columns(sqlite_conn, table)
        if not columns:
            continue
        insert_sql = _insert_sql(table, columns)
        cursor = sqlite_conn.execute(f"SELECT {', '.join(columns)} FROM {table}")
        copied = 0
        for batch in _chunked(cursor.fetchall(), 500):
            with pg_conn.cursor() as pg_cursor:
                pg_cursor.executemany(insert_sql, batch)
            pg_conn.commit()
            copied += len(batch)
        print(f"{table}: {copied} rows")

    sqlite_conn.close()
    pg_conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
