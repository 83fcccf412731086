from __future__ import annotations

import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from .errors import PrivilegeError, StoreIntegrityError, StoreUnavailable
from .migrations import apply_migrations
from .migrations_pg import apply_migrations_pg
from .utils import cosine_similarity

ROLE_CLIENT = "client"
ROLE_ADMIN = "admin"

_MIGRATED: set[str] = set()
_MIGRATION_LOCK = threading.Lock()

_SQLITE_UNAVAILABLE_MARKERS = (
    "database is locked",
    "unable to open database",
    "disk i/o error",
    "database is busy",
)


def get_db_url() -> str | None:
    url = os.environ.get("HG_DB_URL", "").strip()
    return url or None


def get_admin_db_url() -> str | None:
    url = os.environ.get("HG_DB_ADMIN_URL", "").strip()
    return url or None


def is_postgres_url(url: str | None) -> bool:
    if not url:
        return False
    return url.startswith("postgres://") or url.startswith("postgresql://")


class DBConn:
    def __init__(self, conn: Any, backend: str, role: str = ROLE_CLIENT) -> None:
        self._conn = conn
        self.backend = backend
        self.role = role
        if backend == "postgres":
            import psycopg

            self._integrity_errors: tuple[type[BaseException], ...] = (psycopg.IntegrityError,)
            self._unavailable_errors: tuple[type[BaseException], ...] = (
                psycopg.OperationalError,
                psycopg.InterfaceError,
            )
        else:
            self._integrity_errors = (sqlite3.IntegrityError,)
            self._unavailable_errors = ()

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def execute(self, sql: str, params: tuple | list | None = None):
        sql = _normalize_sql(sql, self.backend)
        params = params or ()
        cursor = self._conn.cursor()
        with self._translate_errors():
            cursor.execute(sql, params)
        return cursor

    def commit(self) -> None:
        with self._translate_errors():
            self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator["DBConn"]:
        if self.backend == "postgres":
            from psycopg.pq import TransactionStatus

            # Outside an open transaction psycopg commits on exit, not at a savepoint.
            if self._conn.info.transaction_status != TransactionStatus.IDLE:
                self.commit()
            with self._translate_errors():
                with self._conn.transaction():
                    yield self
            return
        if self._conn.in_transaction:
            self._conn.commit()
        self.execute("BEGIN IMMEDIATE")
        try:
            yield self
            self.commit()
        except BaseException:
            self._conn.rollback()
            raise

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except self._integrity_errors as exc:
            raise StoreIntegrityError(str(exc), backend=self.backend) from exc
        except sqlite3.OperationalError as exc:
            message = str(exc).lower()
            if any(marker in message for marker in _SQLITE_UNAVAILABLE_MARKERS):
                raise StoreUnavailable(str(exc), backend=self.backend) from exc
            raise
        except self._unavailable_errors as exc:
            raise StoreUnavailable(str(exc), backend=self.backend) from exc

    def __getattr__(self, name: str):
        return getattr(self._conn, name)


@dataclass
class StoreHandles:
    """The restricted and elevated connections to the same store."""

    client: DBConn
    admin: DBConn | None

    def require_admin(self) -> DBConn:
        if self.admin is None:
            raise PrivilegeError("admin store handle is not configured")
        return self.admin

    def close(self) -> None:
        self.client.close()
        if self.admin is not None:
            self.admin.close()


def require_admin(conn: DBConn) -> None:
    if getattr(conn, "role", None) != ROLE_ADMIN:
        raise PrivilegeError(
            "operation requires the admin store handle",
            role=getattr(conn, "role", None),
        )


def connect_db(path: str, role: str = ROLE_CLIENT, url: str | None = None) -> DBConn:
    url = url or get_db_url()
    if url and is_postgres_url(url):
        try:
            import psycopg
        except ImportError as exc:  # pragma: no cover - depends on env
            raise RuntimeError("psycopg is required for PostgreSQL support") from exc
        try:
            raw = psycopg.connect(url)
        except psycopg.OperationalError as exc:
            raise StoreUnavailable(str(exc), backend="postgres") from exc
        conn = DBConn(raw, "postgres", role=role)
        _migrate_once(f"postgres:{url}", lambda: apply_migrations_pg(conn))
        return conn

    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    try:
        raw = sqlite3.connect(path, timeout=5.0, check_same_thread=False)
    except sqlite3.OperationalError as exc:
        raise StoreUnavailable(str(exc), backend="sqlite", path=path) from exc
    raw.execute("PRAGMA journal_mode=WAL")
    raw.execute("PRAGMA synchronous=NORMAL")
    raw.execute("PRAGMA busy_timeout=5000")
    raw.execute("PRAGMA foreign_keys=ON")
    raw.create_function("vector_similarity", 2, _sqlite_vector_similarity, deterministic=True)
    _migrate_once(f"sqlite:{os.path.abspath(path)}", lambda: apply_migrations(raw))
    return DBConn(raw, "sqlite", role=role)


def open_store(path: str) -> StoreHandles:
    url = get_db_url()
    if url and is_postgres_url(url):
        client = connect_db(path, role=ROLE_CLIENT, url=url)
        admin_url = get_admin_db_url()
        admin = connect_db(path, role=ROLE_ADMIN, url=admin_url) if admin_url else None
        return StoreHandles(client=client, admin=admin)
    return StoreHandles(
        client=connect_db(path, role=ROLE_CLIENT),
        admin=connect_db(path, role=ROLE_ADMIN),
    )


def _migrate_once(key: str, migrate) -> None:
    with _MIGRATION_LOCK:
        if key in _MIGRATED:
            return
        migrate()
        _MIGRATED.add(key)


def _sqlite_vector_similarity(left: Any, right: Any) -> float | None:
    if left is None or right is None:
        return None
    try:
        left_vec = json.loads(left)
        right_vec = json.loads(right)
    except (TypeError, json.JSONDecodeError):
        return None
    return cosine_similarity(
        [float(value) for value in left_vec], [float(value) for value in right_vec]
    )


def _normalize_sql(sql: str, backend: str) -> str:
    if backend != "postgres":
        return sql
    normalized = _replace_insert_or_ignore(sql)
    normalized = normalized.replace("BEGIN IMMEDIATE", "BEGIN")
    normalized = _convert_qmark_to_percent(normalized)
    return normalized


def _replace_insert_or_ignore(sql: str) -> str:
    upper = sql.upper()
    if "INSERT OR IGNORE" not in upper:
        return sql
    replaced = _replace_first_case_insensitive(sql, "INSERT OR IGNORE", "INSERT")
    if "ON CONFLICT" in replaced.upper():
        return replaced
    stripped = replaced.rstrip().rstrip(";")
    return stripped + " ON CONFLICT DO NOTHING"


def _replace_first_case_insensitive(text: str, needle: str, replacement: str) -> str:
    idx = text.upper().find(needle.upper())
    if idx == -1:
        return text
    return text[:idx] + replacement + text[idx + len(needle) :]


def _convert_qmark_to_percent(sql: str) -> str:
    out = []
    in_single = False
    in_double = False
    escape = False
    for ch in sql:
        if ch == "\\" and not escape:
            escape = True
            out.append(ch)
            continue
        if ch == "'" and not in_double and not escape:
            in_single = not in_single
        elif ch == '"' and not in_single and not escape:
            in_double = not in_double
        if ch == "?" and not in_single and not in_double:
            out.append("%s")
        elif ch == "%":
            out.append("%%")
        else:
            out.append(ch)
        escape = False
    return "".join(out)
