"""Partner credit ledger.

The balance lives in ``business_partners.credits_remaining`` and every change
to it is mirrored by one row in ``credit_usage_log``, written in the same
transaction so readers never see one without the other. Debits are a single
conditional ``UPDATE ... WHERE credits_remaining >= amount`` so concurrent
callers serialize on the row and can never drive the balance below zero.
Top-ups are logged with a negative amount.
"""

from __future__ import annotations

import logging
from typing import Any

from ..config import Config, default_config
from ..db import require_admin
from ..errors import (
    InsufficientCreditsError,
    NotFoundError,
    PartialFailure,
    StoreUnavailable,
    ValidationError,
)
from ..models import BusinessPartner, CreditBalance, CreditUsageLogEntry, LedgerReconciliation
from ..utils import log_event, new_id, utc_now_iso
from .partners_service import require_partner

logger = logging.getLogger("huntergraph.ledger")


def get_credits(conn: Any, partner_id: str, config: Config | None = None) -> CreditBalance:
    config = config or default_config()
    partner = require_partner(conn, partner_id)
    return CreditBalance(
        partner_id=partner.id,
        remaining=partner.credits_remaining,
        purchased=partner.credits_purchased,
        monthly_allowance=config.ledger.tier_allowances.get(partner.partnership_tier, 0),
    )


def debit_credits(
    conn: Any,
    partner_id: str,
    amount: Any,
    description: str | None,
    mention_id: str | None = None,
) -> BusinessPartner:
    require_admin(conn)
    amount = _positive_amount(amount)
    now = utc_now_iso()
    balance_after = None
    logged = False
    try:
        with conn.transaction():
            cursor = conn.execute(
                """
                UPDATE business_partners
                SET credits_remaining = credits_remaining - ?, updated_at = ?
                WHERE id = ? AND credits_remaining >= ?
                RETURNING credits_remaining
                """,
                (amount, now, partner_id, amount),
            )
            rows = cursor.fetchall()
            if not rows:
                _raise_debit_rejected(conn, partner_id, amount)
            balance_after = int(rows[0][0])
            if mention_id:
                cursor = conn.execute(
                    """
                    UPDATE article_business_mentions
                    SET credits_charged = credits_charged + ?, updated_at = ?
                    WHERE id = ? AND business_partner_id = ?
                    """,
                    (amount, now, mention_id, partner_id),
                )
                if cursor.rowcount != 1:
                    raise NotFoundError(
                        "mention not found for partner",
                        mention_id=mention_id,
                        partner_id=partner_id,
                    )
            append_usage_entry(conn, partner_id, amount, description, mention_id, balance_after)
            logged = True
    except StoreUnavailable as exc:
        if not logged:
            raise
        raise _commit_unconfirmed(
            exc, partner_id, "debit", amount, description, mention_id, balance_after
        ) from exc

    log_event(
        logger,
        logging.INFO,
        "credits_debited",
        partner_id=partner_id,
        amount=amount,
        balance_after=balance_after,
        mention_id=mention_id,
    )
    return require_partner(conn, partner_id)


def top_up_credits(
    conn: Any, partner_id: str, amount: Any, description: str | None
) -> BusinessPartner:
    require_admin(conn)
    amount = _positive_amount(amount)
    balance_after = None
    logged = False
    try:
        with conn.transaction():
            cursor = conn.execute(
                """
                UPDATE business_partners
                SET credits_remaining = credits_remaining + ?,
                    credits_purchased = credits_purchased + ?,
                    updated_at = ?
                WHERE id = ?
                RETURNING credits_remaining
                """,
                (amount, amount, utc_now_iso(), partner_id),
            )
            rows = cursor.fetchall()
            if not rows:
                raise NotFoundError("business partner not found", partner_id=partner_id)
            balance_after = int(rows[0][0])
            append_usage_entry(conn, partner_id, -amount, description, None, balance_after)
            logged = True
    except StoreUnavailable as exc:
        if not logged:
            raise
        raise _commit_unconfirmed(
            exc, partner_id, "top_up", amount, description, None, balance_after
        ) from exc

    log_event(
        logger,
        logging.INFO,
        "credits_topped_up",
        partner_id=partner_id,
        amount=amount,
        balance_after=balance_after,
    )
    return require_partner(conn, partner_id)


def list_usage(
    conn: Any, partner_id: str, limit: int | None = None, config: Config | None = None
) -> list[CreditUsageLogEntry]:
    config = config or default_config()
    require_partner(conn, partner_id)
    cursor = conn.execute(
        """
        SELECT id, business_partner_id, amount, description, mention_id, balance_after, created_at
        FROM credit_usage_log
        WHERE business_partner_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT ?
        """,
        (partner_id, max(1, int(limit or config.ledger.usage_history_limit))),
    )
    return [_row_to_entry(row) for row in cursor.fetchall()]


def reconcile(conn: Any, partner_id: str) -> LedgerReconciliation:
    # One statement so the balance and the log sum come from the same snapshot.
    row = conn.execute(
        """
        SELECT p.credits_purchased, p.credits_remaining,
            (SELECT COALESCE(SUM(CASE WHEN l.amount > 0 THEN l.amount ELSE 0 END), 0)
             FROM credit_usage_log l
             WHERE l.business_partner_id = p.id)
        FROM business_partners p
        WHERE p.id = ?
        """,
        (partner_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError("business partner not found", partner_id=partner_id)
    purchased, remaining = int(row[0]), int(row[1])
    logged_usage = int(row[2] or 0)
    consumed = purchased - remaining
    result = LedgerReconciliation(
        partner_id=partner_id,
        purchased=purchased,
        remaining=remaining,
        logged_usage=logged_usage,
        discrepancy=consumed - logged_usage,
    )
    if not result.balanced:
        log_event(
            logger,
            logging.WARNING,
            "ledger_discrepancy",
            partner_id=partner_id,
            consumed=consumed,
            logged_usage=logged_usage,
            discrepancy=result.discrepancy,
        )
    return result


def append_usage_entry(
    conn: Any,
    partner_id: str,
    amount: int,
    description: str | None,
    mention_id: str | None,
    balance_after: int | None,
) -> CreditUsageLogEntry:
    """Insert one usage row. Runs inside the caller's transaction; never commits."""
    entry_id = new_id()
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO credit_usage_log
            (id, business_partner_id, amount, description, mention_id, balance_after, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (entry_id, partner_id, amount, description, mention_id, balance_after, now),
    )
    return CreditUsageLogEntry(
        id=entry_id,
        business_partner_id=partner_id,
        amount=amount,
        description=description,
        mention_id=mention_id,
        balance_after=balance_after,
        created_at=now,
    )


def _commit_unconfirmed(
    exc: Exception,
    partner_id: str,
    operation: str,
    amount: int,
    description: str | None,
    mention_id: str | None,
    balance_after: int | None,
) -> PartialFailure:
    # Balance change and usage row were both written; only the commit is in doubt.
    log_event(
        logger,
        logging.ERROR,
        "credit_commit_unconfirmed",
        partner_id=partner_id,
        operation=operation,
        amount=amount,
        balance_after=balance_after,
        error=str(exc),
    )
    return PartialFailure(
        f"credit {operation} commit could not be confirmed; reconcile before retrying",
        partner_id=partner_id,
        operation=operation,
        amount=amount,
        description=description,
        mention_id=mention_id,
        balance_after=balance_after,
    )


def _raise_debit_rejected(conn: Any, partner_id: str, amount: int) -> None:
    row = conn.execute(
        "SELECT credits_remaining FROM business_partners WHERE id = ?",
        (partner_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError("business partner not found", partner_id=partner_id)
    log_event(
        logger,
        logging.INFO,
        "credits_debit_rejected",
        partner_id=partner_id,
        amount=amount,
        remaining=row[0],
    )
    raise InsufficientCreditsError(
        "insufficient credits",
        partner_id=partner_id,
        requested=amount,
        remaining=int(row[0]),
    )


def _positive_amount(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("amount must be an integer", field="amount", value=value)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError("amount must be an integer", field="amount", value=value)
    if value <= 0:
        raise ValidationError("amount must be positive", field="amount", value=value)
    return value


def _row_to_entry(row: tuple) -> CreditUsageLogEntry:
    entry_id, partner_id, amount, description, mention_id, balance_after, created_at = row
    return CreditUsageLogEntry(
        id=entry_id,
        business_partner_id=partner_id,
        amount=int(amount),
        description=description,
        mention_id=mention_id,
        balance_after=int(balance_after) if balance_after is not None else None,
        created_at=created_at,
    )
