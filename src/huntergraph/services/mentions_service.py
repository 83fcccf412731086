from __future__ import annotations

import logging
from typing import Any

from ..config import Config, default_config
from ..errors import ConflictError, NotFoundError, StoreIntegrityError, ValidationError
from ..models import ArticleBusinessMention, ArticleSummary, PartnerSummary
from ..utils import clamp_score, json_dumps, json_loads_or, log_event, new_id, utc_now_iso
from .articles_service import article_exists
from .partners_service import require_partner

logger = logging.getLogger("huntergraph.mentions")

# Each mention carries a summary of its article and partner.
_MENTION_SELECT = """
    SELECT m.id, m.article_id, m.business_partner_id, m.mention_context, m.relevance_score,
        m.mention_type, m.verified, m.credits_charged, m.metadata_json, m.created_at,
        m.updated_at, a.title, a.created_at, p.business_name, p.business_type
    FROM article_business_mentions m
    LEFT JOIN articles a ON a.id = m.article_id
    LEFT JOIN business_partners p ON p.id = m.business_partner_id
"""
MUTABLE_FIELDS = ("mention_context", "relevance_score", "mention_type", "verified")
UNKNOWN_BUSINESS_TYPE = "unknown"


def create_mention(
    conn: Any,
    article_id: str | None,
    partner_id: str | None,
    context: str | None = None,
    relevance_score: Any = None,
    mention_type: str | None = None,
    config: Config | None = None,
) -> ArticleBusinessMention:
    config = config or default_config()
    if not article_id or not partner_id:
        raise ValidationError(
            "article_id and business_partner_id are required",
            article_id=article_id,
            business_partner_id=partner_id,
        )

    existing = _find_pair(conn, article_id, partner_id)
    if existing:
        raise ConflictError(
            "mention already exists for article and partner",
            mention_id=existing,
            article_id=article_id,
            business_partner_id=partner_id,
        )

    score = _relevance(
        relevance_score if relevance_score is not None else config.mentions.default_relevance_score
    )
    kind = str(mention_type or config.mentions.default_mention_type).strip()
    if not article_exists(conn, article_id):
        raise NotFoundError("article not found", article_id=article_id)
    require_partner(conn, partner_id)

    mention_id = new_id()
    now = utc_now_iso()
    metadata = {
        "created_by": config.mentions.created_by,
        "extraction_method": config.mentions.extraction_method,
    }
    try:
        conn.execute(
            """
            INSERT INTO article_business_mentions
                (id, article_id, business_partner_id, mention_context, relevance_score,
                 mention_type, verified, credits_charged, metadata_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?)
            """,
            (
                mention_id,
                article_id,
                partner_id,
                _context(context),
                score,
                kind,
                json_dumps(metadata),
                now,
                now,
            ),
        )
        conn.commit()
    except StoreIntegrityError as exc:
        # A concurrent insert for the same pair won the unique constraint.
        conn.rollback()
        winner = _find_pair(conn, article_id, partner_id)
        if winner:
            raise ConflictError(
                "mention already exists for article and partner",
                mention_id=winner,
                article_id=article_id,
                business_partner_id=partner_id,
            ) from exc
        raise
    log_event(
        logger,
        logging.INFO,
        "mention_created",
        mention_id=mention_id,
        article_id=article_id,
        partner_id=partner_id,
        relevance_score=score,
    )
    return require_mention(conn, mention_id)


def get_mention(conn: Any, mention_id: str) -> ArticleBusinessMention | None:
    cursor = conn.execute(
        f"{_MENTION_SELECT} WHERE m.id = ?",
        (mention_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_mention(row)


def require_mention(conn: Any, mention_id: str) -> ArticleBusinessMention:
    mention = get_mention(conn, mention_id)
    if mention is None:
        raise NotFoundError("mention not found", mention_id=mention_id)
    return mention


def list_mentions(
    conn: Any,
    article_id: str | None = None,
    partner_id: str | None = None,
    limit: int | None = None,
    offset: int = 0,
    config: Config | None = None,
) -> list[ArticleBusinessMention]:
    config = config or default_config()
    clauses: list[str] = []
    params: list[object] = []
    if article_id:
        clauses.append("m.article_id = ?")
        params.append(article_id)
    if partner_id:
        clauses.append("m.business_partner_id = ?")
        params.append(partner_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    cursor = conn.execute(
        f"""
        {_MENTION_SELECT}
        {where}
        ORDER BY m.created_at DESC, m.id ASC
        LIMIT ? OFFSET ?
        """,
        (*params, max(1, int(limit or config.mentions.list_limit)), max(0, int(offset))),
    )
    return [_row_to_mention(row) for row in cursor.fetchall()]


def update_mention(conn: Any, mention_id: str, fields: dict[str, Any]) -> ArticleBusinessMention:
    unknown = sorted(key for key in fields if key not in MUTABLE_FIELDS)
    if unknown:
        raise ValidationError(
            "fields are not mutable",
            mention_id=mention_id,
            fields=unknown,
            allowed=list(MUTABLE_FIELDS),
        )
    require_mention(conn, mention_id)

    updates: dict[str, object] = {}
    if fields.get("mention_context") is not None:
        updates["mention_context"] = _context(fields["mention_context"])
    if fields.get("relevance_score") is not None:
        updates["relevance_score"] = _relevance(fields["relevance_score"])
    if fields.get("mention_type") is not None:
        kind = str(fields["mention_type"]).strip()
        if not kind:
            raise ValidationError("mention_type must not be empty", mention_id=mention_id)
        updates["mention_type"] = kind
    if fields.get("verified") is not None:
        updates["verified"] = 1 if fields["verified"] else 0
    updates["updated_at"] = utc_now_iso()

    assignments = ", ".join(f"{column} = ?" for column in updates)
    cursor = conn.execute(
        f"UPDATE article_business_mentions SET {assignments} WHERE id = ?",
        (*updates.values(), mention_id),
    )
    conn.commit()
    if cursor.rowcount == 0:
        raise NotFoundError("mention not found", mention_id=mention_id)
    log_event(
        logger,
        logging.INFO,
        "mention_updated",
        mention_id=mention_id,
        fields=",".join(sorted(key for key in updates if key != "updated_at")),
    )
    return require_mention(conn, mention_id)


def delete_mention(conn: Any, mention_id: str) -> None:
    cursor = conn.execute(
        "DELETE FROM article_business_mentions WHERE id = ?",
        (mention_id,),
    )
    conn.commit()
    if cursor.rowcount == 0:
        raise NotFoundError("mention not found", mention_id=mention_id)
    log_event(logger, logging.INFO, "mention_deleted", mention_id=mention_id)


def get_stats_by_business_type(conn: Any) -> dict[str, dict[str, float | int]]:
    cursor = conn.execute(
        f"""
        SELECT COALESCE(p.business_type, '{UNKNOWN_BUSINESS_TYPE}') AS business_type,
               COUNT(*),
               AVG(m.relevance_score)
        FROM article_business_mentions m
        JOIN business_partners p ON p.id = m.business_partner_id
        GROUP BY COALESCE(p.business_type, '{UNKNOWN_BUSINESS_TYPE}')
        ORDER BY business_type ASC
        """
    )
    return {
        business_type: {
            "count": int(count),
            "average_relevance_score": float(average),
        }
        for business_type, count, average in cursor.fetchall()
    }


def get_mention_stats(conn: Any) -> dict[str, object]:
    row = conn.execute("SELECT COUNT(*) FROM article_business_mentions").fetchone()
    return {
        "total_mentions": int(row[0] or 0),
        "mentions_by_business_type": get_stats_by_business_type(conn),
        "generated_at": utc_now_iso(),
    }


def _find_pair(conn: Any, article_id: str, partner_id: str) -> str | None:
    cursor = conn.execute(
        """
        SELECT id FROM article_business_mentions
        WHERE article_id = ? AND business_partner_id = ?
        """,
        (article_id, partner_id),
    )
    row = cursor.fetchone()
    return row[0] if row else None


def _relevance(value: Any) -> float:
    try:
        return clamp_score(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "relevance_score must be a number", field="relevance_score", value=value
        ) from exc


def _context(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _row_to_mention(row: tuple) -> ArticleBusinessMention:
    (
        mention_id,
        article_id,
        partner_id,
        mention_context,
        relevance_score,
        mention_type,
        verified,
        credits_charged,
        metadata_json,
        created_at,
        updated_at,
        article_title,
        article_created_at,
        partner_name,
        partner_type,
    ) = row
    article = None
    if article_title is not None:
        article = ArticleSummary(id=article_id, title=article_title, created_at=article_created_at)
    partner = None
    if partner_name is not None:
        partner = PartnerSummary(
            id=partner_id, business_name=partner_name, business_type=partner_type
        )
    return ArticleBusinessMention(
        id=mention_id,
        article_id=article_id,
        business_partner_id=partner_id,
        mention_context=mention_context,
        relevance_score=float(relevance_score),
        mention_type=mention_type,
        verified=bool(verified),
        credits_charged=int(credits_charged or 0),
        metadata=json_loads_or(metadata_json, {}),
        created_at=created_at,
        updated_at=updated_at,
        article=article,
        business_partner=partner,
    )
