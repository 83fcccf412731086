from __future__ import annotations

import logging
from typing import Any

from ..db import require_admin
from ..errors import NotFoundError, ValidationError
from ..models import PARTNER_STATUSES, PARTNERSHIP_TIERS, BusinessPartner, EntitySummary
from ..utils import log_event, new_id, utc_now_iso

logger = logging.getLogger("huntergraph.partners")

# Each partner carries a summary of its backing knowledge-graph entity.
_PARTNER_SELECT = """
    SELECT b.id, b.entity_id, b.business_name, b.business_type, b.contact_name,
        b.contact_email, b.contact_phone, b.partnership_tier, b.monthly_fee,
        b.credits_purchased, b.credits_remaining, b.contract_start_date, b.contract_end_date,
        b.auto_renewal, b.status, b.notes, b.created_at, b.updated_at,
        e.name, e.type, e.description
    FROM business_partners b
    LEFT JOIN entities e ON e.id = b.entity_id
"""


def create_partner(conn: Any, payload: dict[str, Any]) -> BusinessPartner:
    require_admin(conn)
    business_name = str(payload.get("business_name") or "").strip()
    if not business_name:
        raise ValidationError("business_name is required", field="business_name")
    tier = _tier(payload.get("partnership_tier") or "bronze")
    status = _status(payload.get("status") or "active")
    credits = _credits(payload.get("credits_purchased", payload.get("mention_credits_total", 0)))
    entity_id = payload.get("entity_id") or None
    if entity_id is not None:
        cursor = conn.execute("SELECT 1 FROM entities WHERE id = ?", (entity_id,))
        if cursor.fetchone() is None:
            raise NotFoundError("entity not found", entity_id=entity_id)
    monthly_fee = payload.get("monthly_fee")
    if monthly_fee is not None:
        try:
            monthly_fee = float(monthly_fee)
        except (TypeError, ValueError) as exc:
            raise ValidationError("monthly_fee must be a number", field="monthly_fee", value=monthly_fee) from exc

    partner_id = new_id()
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO business_partners
            (id, entity_id, business_name, business_type, contact_name, contact_email,
             contact_phone, partnership_tier, monthly_fee, credits_purchased,
             credits_remaining, contract_start_date, contract_end_date, auto_renewal,
             status, notes, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            partner_id,
            entity_id,
            business_name,
            _optional_text(payload.get("business_type")),
            _optional_text(payload.get("contact_name")),
            _optional_text(payload.get("contact_email")),
            _optional_text(payload.get("contact_phone")),
            tier,
            monthly_fee,
            credits,
            credits,
            payload.get("contract_start_date"),
            payload.get("contract_end_date"),
            1 if payload.get("auto_renewal", True) else 0,
            status,
            payload.get("notes"),
            now,
            now,
        ),
    )
    conn.commit()
    log_event(
        logger,
        logging.INFO,
        "partner_created",
        partner_id=partner_id,
        tier=tier,
        credits=credits,
    )
    return require_partner(conn, partner_id)


def get_partner(conn: Any, partner_id: str) -> BusinessPartner | None:
    cursor = conn.execute(
        f"{_PARTNER_SELECT} WHERE b.id = ?",
        (partner_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_partner(row)


def require_partner(conn: Any, partner_id: str) -> BusinessPartner:
    partner = get_partner(conn, partner_id)
    if partner is None:
        raise NotFoundError("business partner not found", partner_id=partner_id)
    return partner


def list_partners(
    conn: Any,
    status: str | None = "active",
    tier: str | None = None,
    limit: int = 20,
) -> list[BusinessPartner]:
    clauses: list[str] = []
    params: list[object] = []
    if status:
        clauses.append("b.status = ?")
        params.append(_status(status))
    if tier:
        clauses.append("b.partnership_tier = ?")
        params.append(_tier(tier))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    cursor = conn.execute(
        f"""
        {_PARTNER_SELECT}
        {where}
        ORDER BY b.business_name ASC
        LIMIT ?
        """,
        (*params, max(1, int(limit))),
    )
    return [_row_to_partner(row) for row in cursor.fetchall()]


def _row_to_partner(row: tuple) -> BusinessPartner:
    (
        partner_id,
        entity_id,
        business_name,
        business_type,
        contact_name,
        contact_email,
        contact_phone,
        partnership_tier,
        monthly_fee,
        credits_purchased,
        credits_remaining,
        contract_start_date,
        contract_end_date,
        auto_renewal,
        status,
        notes,
        created_at,
        updated_at,
        entity_name,
        entity_type,
        entity_description,
    ) = row
    entity = None
    if entity_id and entity_name is not None:
        entity = EntitySummary(
            id=entity_id, name=entity_name, type=entity_type, description=entity_description
        )
    return BusinessPartner(
        id=partner_id,
        entity_id=entity_id,
        business_name=business_name,
        business_type=business_type,
        contact_name=contact_name,
        contact_email=contact_email,
        contact_phone=contact_phone,
        partnership_tier=partnership_tier,
        monthly_fee=float(monthly_fee) if monthly_fee is not None else None,
        credits_purchased=int(credits_purchased or 0),
        credits_remaining=int(credits_remaining or 0),
        contract_start_date=contract_start_date,
        contract_end_date=contract_end_date,
        auto_renewal=bool(auto_renewal),
        status=status,
        notes=notes,
        created_at=created_at,
        updated_at=updated_at,
        entity=entity,
    )


def _tier(value: Any) -> str:
    tier = str(value).strip().lower()
    if tier not in PARTNERSHIP_TIERS:
        raise ValidationError(
            "unsupported partnership tier",
            field="partnership_tier",
            value=tier,
            allowed=list(PARTNERSHIP_TIERS),
        )
    return tier


def _status(value: Any) -> str:
    status = str(value).strip().lower()
    if status not in PARTNER_STATUSES:
        raise ValidationError(
            "unsupported partner status", field="status", value=status, allowed=list(PARTNER_STATUSES)
        )
    return status


def _credits(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("credits must be an integer", field="credits_purchased", value=value)
    try:
        credits = int(value or 0)
    except (TypeError, ValueError) as exc:
        raise ValidationError("credits must be an integer", field="credits_purchased", value=value) from exc
    if credits < 0:
        raise ValidationError("credits must not be negative", field="credits_purchased", value=value)
    return credits


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
