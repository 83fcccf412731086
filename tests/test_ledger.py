import pytest

from huntergraph.db import ROLE_ADMIN, connect_db
from huntergraph.errors import (
    InsufficientCreditsError,
    NotFoundError,
    PartialFailure,
    PrivilegeError,
    StoreUnavailable,
    ValidationError,
)
from huntergraph.services import ledger_service
from huntergraph.services.articles_service import create_article
from huntergraph.services.mentions_service import create_mention, get_mention
from huntergraph.services.partners_service import create_partner, get_partner


def _partner(admin, credits=10, tier="bronze"):
    return create_partner(
        admin,
        {"business_name": "Harbor View Realty", "partnership_tier": tier, "credits_purchased": credits},
    )


def test_debit_then_overdraw_leaves_balance_untouched(store):
    partner = _partner(store.admin, credits=10)

    after = ledger_service.debit_credits(store.admin, partner.id, 4, "mention in article")
    assert after.credits_remaining == 6

    with pytest.raises(InsufficientCreditsError) as excinfo:
        ledger_service.debit_credits(store.admin, partner.id, 10, "too much")
    assert excinfo.value.context["requested"] == 10
    assert excinfo.value.context["remaining"] == 6

    assert get_partner(store.client, partner.id).credits_remaining == 6
    usage = ledger_service.list_usage(store.client, partner.id)
    assert [(entry.amount, entry.balance_after) for entry in usage] == [(4, 6)]


def test_debit_rejects_bad_amounts_and_unknown_partner(store):
    partner = _partner(store.admin)
    for amount in (0, -3, 1.5, True, "2"):
        with pytest.raises(ValidationError):
            ledger_service.debit_credits(store.admin, partner.id, amount, "bad")
    with pytest.raises(NotFoundError):
        ledger_service.debit_credits(store.admin, "missing", 1, "nobody")
    assert get_partner(store.client, partner.id).credits_remaining == 10


def test_ledger_mutations_require_admin_handle(store):
    partner = _partner(store.admin)
    with pytest.raises(PrivilegeError):
        ledger_service.debit_credits(store.client, partner.id, 1, "client")
    with pytest.raises(PrivilegeError):
        ledger_service.top_up_credits(store.client, partner.id, 1, "client")
    assert get_partner(store.client, partner.id).credits_remaining == 10


def test_debit_for_mention_tracks_credits_charged(store):
    partner = _partner(store.admin)
    article = create_article(store.client, {"title": "Budget Vote", "content": "Council approved it."})
    mention = create_mention(store.client, article.id, partner.id)

    ledger_service.debit_credits(store.admin, partner.id, 2, "mention", mention_id=mention.id)
    assert get_mention(store.client, mention.id).credits_charged == 2
    assert ledger_service.list_usage(store.client, partner.id)[0].mention_id == mention.id

    with pytest.raises(NotFoundError):
        ledger_service.debit_credits(store.admin, partner.id, 1, "mention", mention_id="missing")
    assert get_partner(store.client, partner.id).credits_remaining == 8


def test_failed_log_append_rolls_back_the_debit(store, monkeypatch):
    partner = _partner(store.admin)

    def _broken_append(*args, **kwargs):
        raise RuntimeError("log table unavailable")

    monkeypatch.setattr(ledger_service, "append_usage_entry", _broken_append)
    with pytest.raises(RuntimeError):
        ledger_service.debit_credits(store.admin, partner.id, 3, "lost entry")

    assert get_partner(store.client, partner.id).credits_remaining == 10
    assert ledger_service.list_usage(store.client, partner.id) == []
    assert ledger_service.reconcile(store.client, partner.id).balanced is True


def test_concurrent_reader_never_sees_debit_without_log_entry(store, monkeypatch):
    partner = _partner(store.admin)
    real_append = ledger_service.append_usage_entry
    seen = {}

    def _append_with_reader(conn, *args, **kwargs):
        seen["remaining"] = get_partner(store.client, partner.id).credits_remaining
        seen["log_rows"] = len(ledger_service.list_usage(store.client, partner.id))
        seen["balanced"] = ledger_service.reconcile(store.client, partner.id).balanced
        return real_append(conn, *args, **kwargs)

    monkeypatch.setattr(ledger_service, "append_usage_entry", _append_with_reader)
    ledger_service.debit_credits(store.admin, partner.id, 4, "mention")

    assert seen == {"remaining": 10, "log_rows": 0, "balanced": True}
    assert get_partner(store.client, partner.id).credits_remaining == 6
    assert len(ledger_service.list_usage(store.client, partner.id)) == 1
    assert ledger_service.reconcile(store.client, partner.id).balanced is True


def test_unconfirmed_commit_raises_partial_failure(store, tmp_path):
    partner = _partner(store.admin)
    admin = connect_db(str(tmp_path / "state.sqlite3"), role=ROLE_ADMIN)

    def _lost_commit():
        raise StoreUnavailable("connection dropped during commit", backend="sqlite")

    admin.commit = _lost_commit
    try:
        with pytest.raises(PartialFailure) as excinfo:
            ledger_service.debit_credits(admin, partner.id, 3, "unconfirmed")
    finally:
        admin.close()
    assert excinfo.value.context["operation"] == "debit"
    assert excinfo.value.context["amount"] == 3
    assert excinfo.value.context["balance_after"] == 7

    result = ledger_service.reconcile(store.client, partner.id)
    assert result.balanced is True
    assert result.remaining == 10


def test_top_up_is_logged_negative_and_stays_balanced(store):
    partner = _partner(store.admin, credits=5)
    ledger_service.debit_credits(store.admin, partner.id, 2, "mention")

    topped = ledger_service.top_up_credits(store.admin, partner.id, 20, "renewal")
    assert topped.credits_remaining == 23
    assert topped.credits_purchased == 25

    usage = ledger_service.list_usage(store.client, partner.id)
    assert sorted(entry.amount for entry in usage) == [-20, 2]
    result = ledger_service.reconcile(store.client, partner.id)
    assert result.logged_usage == 2
    assert result.balanced is True

    with pytest.raises(NotFoundError):
        ledger_service.top_up_credits(store.admin, "missing", 5, "nobody")


def test_get_credits_reports_monthly_allowance_by_tier(store):
    partner = _partner(store.admin, credits=40, tier="gold")
    balance = ledger_service.get_credits(store.client, partner.id)
    assert balance.remaining == 40
    assert balance.purchased == 40
    assert balance.monthly_allowance == 50

    with pytest.raises(NotFoundError):
        ledger_service.get_credits(store.client, "missing")
