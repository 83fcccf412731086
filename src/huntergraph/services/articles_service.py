from __future__ import annotations

import logging
import math
from typing import Any

from ..config import Config, default_config
from ..db import require_admin
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..models import ARTICLE_CATEGORIES, ARTICLE_STATUSES, Article
from ..utils import clamp_score, json_dumps, json_loads_or, log_event, new_id, utc_now_iso, word_count

logger = logging.getLogger("huntergraph.articles")

_ARTICLE_COLUMNS = (
    "id, title, content, word_count, category, status, hunter_voice_score, quality_score, "
    "relevance_score, engagement_potential, source_url, source_title, image_url, image_alt_text, "
    "tags_json, published_at, app_published, app_published_at, social_media_posted, view_count, "
    "engagement_count, created_at, updated_at"
)
_SORTABLE_COLUMNS = (
    "created_at",
    "updated_at",
    "published_at",
    "title",
    "word_count",
    "quality_score",
    "relevance_score",
    "hunter_voice_score",
    "view_count",
)
_SCORE_FIELDS = ("hunter_voice_score", "quality_score", "relevance_score")
_TEXT_FIELDS = ("source_url", "source_title", "image_url", "image_alt_text")
_FLAG_FIELDS = ("app_published", "social_media_posted")
_COUNTER_FIELDS = ("view_count", "engagement_count")
# Lifecycle only moves forward: draft -> published -> archived.
ALLOWED_STATUS_MOVES = {
    "draft": ("published", "archived"),
    "published": ("archived",),
    "archived": (),
}


def create_article(conn: Any, payload: dict[str, Any]) -> Article:
    title = str(payload.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", field="title")
    content = str(payload.get("content") or "").strip()
    if not content:
        raise ValidationError("content is required", field="content")
    category = _category(payload.get("category"))
    status = _status(payload.get("status") or "draft")
    explicit_count = payload.get("word_count")
    count = _non_negative_int(explicit_count, "word_count") if explicit_count is not None else word_count(content)
    now = utc_now_iso()
    published_at = payload.get("published_at") or (now if status == "published" else None)

    article_id = new_id()
    conn.execute(
        """
        INSERT INTO articles
            (id, title, content, word_count, category, status, hunter_voice_score,
             quality_score, relevance_score, engagement_potential, source_url, source_title,
             image_url, image_alt_text, tags_json, published_at, app_published,
             app_published_at, social_media_posted, view_count, engagement_count,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, NULL, 0, 0, 0, ?, ?)
        """,
        (
            article_id,
            title,
            content,
            count,
            category,
            status,
            _score(payload.get("hunter_voice_score"), "hunter_voice_score"),
            _score(payload.get("quality_score"), "quality_score"),
            _score(payload.get("relevance_score"), "relevance_score"),
            _optional_score(payload.get("engagement_potential"), "engagement_potential"),
            payload.get("source_url"),
            payload.get("source_title"),
            payload.get("image_url"),
            payload.get("image_alt_text"),
            json_dumps(_tags(payload.get("tags"))),
            published_at,
            now,
            now,
        ),
    )
    conn.commit()
    log_event(
        logger,
        logging.INFO,
        "article_created",
        article_id=article_id,
        category=category,
        status=status,
        word_count=count,
    )
    return _require_article(conn, article_id)


def get_article(conn: Any, article_id: str) -> Article | None:
    cursor = conn.execute(
        f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE id = ?",
        (article_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_article(row)


def list_articles(
    conn: Any,
    status: str | None = None,
    category: str | None = None,
    published: bool | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int | None = None,
    config: Config | None = None,
) -> dict[str, object]:
    config = config or default_config()
    if sort_by not in _SORTABLE_COLUMNS:
        raise ValidationError("unsupported sort column", field="sort_by", value=sort_by)
    if sort_order.lower() not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc", field="sort_order", value=sort_order)
    page = max(1, int(page))
    limit = min(int(limit or config.articles.page_size), config.articles.max_page_size)
    if limit < 1:
        raise ValidationError("limit must be positive", field="limit", value=limit)

    clauses: list[str] = []
    params: list[object] = []
    if status:
        clauses.append("status = ?")
        params.append(_status(status))
    if category:
        clauses.append("category = ?")
        params.append(_category(category))
    if published is not None:
        clauses.append("app_published = ?")
        params.append(1 if published else 0)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    total_row = conn.execute(f"SELECT COUNT(*) FROM articles {where}", tuple(params)).fetchone()
    total = int(total_row[0] or 0)
    cursor = conn.execute(
        f"""
        SELECT {_ARTICLE_COLUMNS}
        FROM articles
        {where}
        ORDER BY {sort_by} {sort_order.upper()}, id ASC
        LIMIT ? OFFSET ?
        """,
        (*params, limit, (page - 1) * limit),
    )
    return {
        "data": [_row_to_article(row) for row in cursor.fetchall()],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


def update_article(conn: Any, article_id: str, payload: dict[str, Any]) -> Article:
    """Apply an administrative edit; only the admin handle may call this."""
    require_admin(conn)
    current = _require_article(conn, article_id)
    updates: dict[str, object] = {}

    if payload.get("title") is not None:
        title = str(payload["title"]).strip()
        if not title:
            raise ValidationError("title must not be empty", field="title")
        updates["title"] = title
    if payload.get("content") is not None:
        content = str(payload["content"]).strip()
        if not content:
            raise ValidationError("content must not be empty", field="content")
        updates["content"] = content
        if payload.get("word_count") is None:
            updates["word_count"] = word_count(content)
    if payload.get("word_count") is not None:
        updates["word_count"] = _non_negative_int(payload["word_count"], "word_count")
    if "category" in payload:
        updates["category"] = _category(payload.get("category"))
    if payload.get("status") is not None:
        status = _status(payload["status"])
        if status != current.status:
            if status not in ALLOWED_STATUS_MOVES.get(current.status, ()):
                raise InvalidTransitionError(
                    "article status cannot move backwards",
                    article_id=article_id,
                    current=current.status,
                    requested=status,
                )
            updates["status"] = status
        if status == "published" and not current.published_at:
            updates["published_at"] = utc_now_iso()
    for field in _SCORE_FIELDS:
        if payload.get(field) is not None:
            updates[field] = _score(payload[field], field)
    if "engagement_potential" in payload:
        updates["engagement_potential"] = _optional_score(
            payload.get("engagement_potential"), "engagement_potential"
        )
    for field in _TEXT_FIELDS:
        if field in payload:
            updates[field] = payload.get(field)
    if payload.get("tags") is not None:
        updates["tags_json"] = json_dumps(_tags(payload["tags"]))
    for field in _FLAG_FIELDS:
        if payload.get(field) is not None:
            updates[field] = 1 if payload[field] else 0
    if payload.get("app_published") and not current.app_published_at:
        updates["app_published_at"] = utc_now_iso()
    for field in _COUNTER_FIELDS:
        if payload.get(field) is not None:
            updates[field] = _non_negative_int(payload[field], field)

    if not updates:
        return current
    updates["updated_at"] = utc_now_iso()
    assignments = ", ".join(f"{column} = ?" for column in updates)
    conn.execute(
        f"UPDATE articles SET {assignments} WHERE id = ?",
        (*updates.values(), article_id),
    )
    conn.commit()
    log_event(
        logger,
        logging.INFO,
        "article_updated",
        article_id=article_id,
        fields=",".join(sorted(key for key in updates if key != "updated_at")),
    )
    return _require_article(conn, article_id)


def article_exists(conn: Any, article_id: str) -> bool:
    cursor = conn.execute("SELECT 1 FROM articles WHERE id = ?", (article_id,))
    return cursor.fetchone() is not None


def _require_article(conn: Any, article_id: str) -> Article:
    article = get_article(conn, article_id)
    if article is None:
        raise NotFoundError("article not found", article_id=article_id)
    return article


def _category(value: Any) -> str | None:
    if value is None or value == "":
        return None
    category = str(value).strip().lower()
    if category not in ARTICLE_CATEGORIES:
        raise ValidationError(
            "unsupported category", field="category", value=category, allowed=list(ARTICLE_CATEGORIES)
        )
    return category


def _status(value: Any) -> str:
    status = str(value).strip().lower()
    if status not in ARTICLE_STATUSES:
        raise ValidationError(
            "unsupported status", field="status", value=status, allowed=list(ARTICLE_STATUSES)
        )
    return status


def _score(value: Any, field: str) -> float:
    if value is None:
        return 0.0
    try:
        return clamp_score(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", field=field, value=value) from exc


def _optional_score(value: Any, field: str) -> float | None:
    if value is None:
        return None
    return _score(value, field)


def _non_negative_int(value: Any, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", field=field, value=value) from exc
    if number < 0:
        raise ValidationError(f"{field} must not be negative", field=field, value=value)
    return number


def _tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(tag).strip() for tag in value if str(tag).strip()]


def _row_to_article(row: tuple) -> Article:
    (
        article_id,
        title,
        content,
        count,
        category,
        status,
        hunter_voice_score,
        quality_score,
        relevance_score,
        engagement_potential,
        source_url,
        source_title,
        image_url,
        image_alt_text,
        tags_json,
        published_at,
        app_published,
        app_published_at,
        social_media_posted,
        view_count,
        engagement_count,
        created_at,
        updated_at,
    ) = row
    return Article(
        id=article_id,
        title=title,
        content=content,
        word_count=int(count or 0),
        category=category,
        status=status,
        hunter_voice_score=float(hunter_voice_score or 0),
        quality_score=float(quality_score or 0),
        relevance_score=float(relevance_score or 0),
        engagement_potential=float(engagement_potential) if engagement_potential is not None else None,
        source_url=source_url,
        source_title=source_title,
        image_url=image_url,
        image_alt_text=image_alt_text,
        tags=json_loads_or(tags_json, []),
        published_at=published_at,
        app_published=bool(app_published),
        app_published_at=app_published_at,
        social_media_posted=bool(social_media_posted),
        view_count=int(view_count or 0),
        engagement_count=int(engagement_count or 0),
        created_at=created_at,
        updated_at=updated_at,
    )
