from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ..config import Config, default_config
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..models import QUEUE_PRIORITIES, QUEUE_STATUSES, ContentQueueItem
from ..utils import clamp_score, json_dumps, json_loads_or, log_event, new_id, utc_now_iso, word_count

logger = logging.getLogger("huntergraph.queue")

_QUEUE_COLUMNS = (
    "id, title, content, word_count, source_url, source_type, priority, relevance_score, "
    "status, scheduled_for, processed_at, metadata_json, created_at, updated_at"
)

ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("processing", "failed"),
    "processing": ("done", "failed", "pending"),
    "failed": ("pending",),
    "done": (),
}


def enqueue(conn: Any, payload: dict[str, Any], config: Config | None = None) -> ContentQueueItem:
    config = config or default_config()
    title = str(payload.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", field="title")
    content = str(payload.get("content") or "").strip()
    if not content:
        raise ValidationError("content is required", field="content")
    priority = _priority(payload.get("priority") or config.queue.default_priority)
    source_type = str(payload.get("source_type") or config.queue.default_source_type).strip()
    relevance = _relevance(payload.get("relevance_score"))
    scheduled_for = _timestamp(payload.get("scheduled_for"), "scheduled_for")
    count = word_count(content)
    metadata = {"word_count": count, "added_by": config.queue.added_by}

    item_id = new_id()
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO content_queue
            (id, title, content, word_count, source_url, source_type, priority,
             relevance_score, status, scheduled_for, processed_at, metadata_json,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, NULL, ?, ?, ?)
        """,
        (
            item_id,
            title,
            content,
            count,
            payload.get("source_url"),
            source_type,
            priority,
            relevance,
            scheduled_for,
            json_dumps(metadata),
            now,
            now,
        ),
    )
    conn.commit()
    log_event(
        logger,
        logging.INFO,
        "queue_item_enqueued",
        item_id=item_id,
        priority=priority,
        relevance_score=relevance,
        word_count=count,
    )
    return require_item(conn, item_id)


def get_item(conn: Any, item_id: str) -> ContentQueueItem | None:
    cursor = conn.execute(
        f"SELECT {_QUEUE_COLUMNS} FROM content_queue WHERE id = ?",
        (item_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_item(row)


def require_item(conn: Any, item_id: str) -> ContentQueueItem:
    item = get_item(conn, item_id)
    if item is None:
        raise NotFoundError("queue item not found", item_id=item_id)
    return item


def list_items(
    conn: Any,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ContentQueueItem]:
    clauses: list[str] = []
    params: list[object] = []
    if status:
        clauses.append("status = ?")
        params.append(_status(status))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    cursor = conn.execute(
        f"""
        SELECT {_QUEUE_COLUMNS}
        FROM content_queue
        {where}
        ORDER BY created_at DESC, id ASC
        LIMIT ? OFFSET ?
        """,
        (*params, max(1, int(limit)), max(0, int(offset))),
    )
    return [_row_to_item(row) for row in cursor.fetchall()]


def dequeue_next(
    conn: Any,
    limit: int | None = None,
    claim: bool = False,
    config: Config | None = None,
) -> list[ContentQueueItem]:
    """Return the next eligible pending items, best first.

    Eligible means ``status = 'pending'`` and not scheduled in the future.
    Ordering is relevance score, then age. With ``claim`` the
    items are moved to ``processing`` one conditional update at a time, and
    only the rows this caller actually flipped are returned.
    """
    config = config or default_config()
    limit = int(limit or config.queue.dequeue_limit)
    if limit < 1:
        raise ValidationError("limit must be positive", field="limit", value=limit)
    limit = min(limit, config.queue.max_dequeue_limit)
    now = utc_now_iso()
    sql = f"""
        SELECT {_QUEUE_COLUMNS}
        FROM content_queue
        WHERE status = 'pending' AND (scheduled_for IS NULL OR scheduled_for <= ?)
        ORDER BY relevance_score DESC, created_at ASC, id ASC
        LIMIT ?
    """
    if not claim:
        cursor = conn.execute(sql, (now, limit))
        return [_row_to_item(row) for row in cursor.fetchall()]

    if getattr(conn, "backend", "sqlite") == "postgres":
        sql += " FOR UPDATE SKIP LOCKED"
    claimed: list[str] = []
    with conn.transaction():
        candidates = conn.execute(sql, (now, limit)).fetchall()
        for row in candidates:
            cursor = conn.execute(
                """
                UPDATE content_queue
                SET status = 'processing', updated_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (now, row[0]),
            )
            if cursor.rowcount == 1:
                claimed.append(row[0])
    if claimed:
        log_event(logger, logging.INFO, "queue_items_claimed", count=len(claimed))
    return [require_item(conn, item_id) for item_id in claimed]


def update_status(
    conn: Any,
    item_id: str,
    status: str,
    processed_at: str | None = None,
) -> ContentQueueItem:
    status = _status(status)
    current = require_item(conn, item_id)
    if current.status == status:
        return current
    if status not in ALLOWED_TRANSITIONS[current.status]:
        raise InvalidTransitionError(
            "queue status transition not allowed",
            item_id=item_id,
            current=current.status,
            requested=status,
        )
    stamp = _timestamp(processed_at, "processed_at")
    if stamp is None and status in ("done", "failed"):
        stamp = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE content_queue
        SET status = ?, processed_at = COALESCE(?, processed_at), updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (status, stamp, utc_now_iso(), item_id, current.status),
    )
    conn.commit()
    if cursor.rowcount == 0:
        latest = require_item(conn, item_id)
        raise InvalidTransitionError(
            "queue item status changed concurrently",
            item_id=item_id,
            current=latest.status,
            requested=status,
        )
    log_event(
        logger,
        logging.INFO,
        "queue_status_updated",
        item_id=item_id,
        previous=current.status,
        status=status,
    )
    return require_item(conn, item_id)


def update_item(conn: Any, item_id: str, payload: dict[str, Any]) -> ContentQueueItem:
    current = require_item(conn, item_id)
    updates: dict[str, object] = {}
    if payload.get("priority") is not None:
        updates["priority"] = _priority(payload["priority"])
    if "scheduled_for" in payload:
        updates["scheduled_for"] = _timestamp(payload.get("scheduled_for"), "scheduled_for")
    if payload.get("relevance_score") is not None:
        updates["relevance_score"] = _relevance(payload["relevance_score"])
    if not updates:
        return current
    updates["updated_at"] = utc_now_iso()
    assignments = ", ".join(f"{column} = ?" for column in updates)
    conn.execute(
        f"UPDATE content_queue SET {assignments} WHERE id = ?",
        (*updates.values(), item_id),
    )
    conn.commit()
    log_event(
        logger,
        logging.INFO,
        "queue_item_updated",
        item_id=item_id,
        fields=",".join(sorted(key for key in updates if key != "updated_at")),
    )
    return require_item(conn, item_id)


def delete_item(conn: Any, item_id: str) -> None:
    cursor = conn.execute("DELETE FROM content_queue WHERE id = ?", (item_id,))
    conn.commit()
    if cursor.rowcount == 0:
        raise NotFoundError("queue item not found", item_id=item_id)
    log_event(logger, logging.INFO, "queue_item_deleted", item_id=item_id)


def _status(value: Any) -> str:
    status = str(value).strip().lower()
    if status not in QUEUE_STATUSES:
        raise ValidationError(
            "unsupported queue status", field="status", value=status, allowed=list(QUEUE_STATUSES)
        )
    return status


def _priority(value: Any) -> str:
    priority = str(value).strip().lower()
    if priority not in QUEUE_PRIORITIES:
        raise ValidationError(
            "unsupported priority", field="priority", value=priority, allowed=list(QUEUE_PRIORITIES)
        )
    return priority


def _relevance(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return clamp_score(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "relevance_score must be a number", field="relevance_score", value=value
        ) from exc


def _timestamp(value: Any, field: str) -> str | None:
    # Stored as UTC ISO-8601 text so string comparison matches time order.
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"{field} must be an ISO-8601 timestamp", field=field, value=value) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def _row_to_item(row: tuple) -> ContentQueueItem:
    (
        item_id,
        title,
        content,
        count,
        source_url,
        source_type,
        priority,
        relevance_score,
        status,
        scheduled_for,
        processed_at,
        metadata_json,
        created_at,
        updated_at,
    ) = row
    return ContentQueueItem(
        id=item_id,
        title=title,
        content=content,
        word_count=int(count or 0),
        source_url=source_url,
        source_type=source_type,
        priority=priority,
        relevance_score=float(relevance_score or 0),
        status=status,
        scheduled_for=scheduled_for,
        processed_at=processed_at,
        metadata=json_loads_or(metadata_json, {}),
        created_at=created_at,
        updated_at=updated_at,
    )
