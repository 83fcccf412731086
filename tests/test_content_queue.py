from datetime import datetime, timedelta, timezone

import pytest

from huntergraph.errors import InvalidTransitionError, NotFoundError, ValidationError
from huntergraph.services.queue_service import (
    delete_item,
    dequeue_next,
    enqueue,
    get_item,
    list_items,
    update_item,
    update_status,
)
from huntergraph.storage import init_db


def _offset_iso(seconds):
    return (datetime.now(tz=timezone.utc) + timedelta(seconds=seconds)).isoformat()


def _enqueue(conn, title, relevance=None, **extra):
    payload = {"title": title, "content": f"{title} body text", **extra}
    if relevance is not None:
        payload["relevance_score"] = relevance
    return enqueue(conn, payload)


def test_enqueue_computes_word_count_and_defaults(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    item = enqueue(conn, {"title": " Zoning notes ", "content": "one two  three"})
    assert item.title == "Zoning notes"
    assert item.word_count == 3
    assert item.status == "pending"
    assert item.priority == "medium"
    assert item.source_type == "rss"
    assert item.metadata == {"word_count": 3, "added_by": "n8n-workflow"}

    with pytest.raises(ValidationError):
        enqueue(conn, {"title": "No body", "content": "   "})
    with pytest.raises(ValidationError):
        enqueue(conn, {"content": "No title"})
    with pytest.raises(ValidationError):
        enqueue(conn, {"title": "Bad", "content": "x", "priority": "whenever"})


def test_dequeue_orders_by_relevance_then_age(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    first = _enqueue(conn, "first", relevance=0.5)
    best = _enqueue(conn, "best", relevance=0.9)
    third = _enqueue(conn, "third", relevance=0.5)

    items = dequeue_next(conn, limit=10)
    assert [item.id for item in items] == [best.id, first.id, third.id]
    assert [item.id for item in dequeue_next(conn, limit=2)] == [best.id, first.id]


def test_dequeue_on_empty_queue_returns_nothing(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    assert dequeue_next(conn, limit=5) == []
    assert dequeue_next(conn, limit=5, claim=True) == []


def test_dequeue_skips_future_and_non_pending_items(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    due = _enqueue(conn, "due", scheduled_for=_offset_iso(-60))
    _enqueue(conn, "later", scheduled_for=_offset_iso(3600))
    busy = _enqueue(conn, "busy")
    update_status(conn, busy.id, "processing")

    assert [item.id for item in dequeue_next(conn, limit=10)] == [due.id]


def test_claim_moves_items_to_processing_once(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    high = _enqueue(conn, "high", relevance=0.8)
    low = _enqueue(conn, "low", relevance=0.2)

    claimed = dequeue_next(conn, limit=1, claim=True)
    assert [item.id for item in claimed] == [high.id]
    assert claimed[0].status == "processing"

    second = dequeue_next(conn, limit=5, claim=True)
    assert [item.id for item in second] == [low.id]
    assert dequeue_next(conn, limit=5, claim=True) == []


def test_status_transitions_are_enforced(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    item = _enqueue(conn, "story")

    with pytest.raises(InvalidTransitionError):
        update_status(conn, item.id, "done")
    with pytest.raises(ValidationError):
        update_status(conn, item.id, "archived")

    same = update_status(conn, item.id, "pending")
    assert same.status == "pending"

    update_status(conn, item.id, "processing")
    done = update_status(conn, item.id, "done")
    assert done.status == "done"
    assert done.processed_at is not None

    with pytest.raises(InvalidTransitionError) as excinfo:
        update_status(conn, item.id, "pending")
    assert excinfo.value.context["current"] == "done"

    failed = _enqueue(conn, "retry")
    update_status(conn, failed.id, "failed")
    assert update_status(conn, failed.id, "pending").status == "pending"

    with pytest.raises(NotFoundError):
        update_status(conn, "missing", "processing")


def test_update_list_and_delete_items(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    item = _enqueue(conn, "story")

    updated = update_item(conn, item.id, {"priority": "urgent", "relevance_score": 7})
    assert updated.priority == "urgent"
    assert updated.relevance_score == 1.0
    with pytest.raises(ValidationError):
        update_item(conn, item.id, {"priority": "someday"})

    scheduled = update_item(conn, item.id, {"scheduled_for": "2030-01-01T00:00:00Z"})
    assert scheduled.scheduled_for == "2030-01-01T00:00:00+00:00"

    _enqueue(conn, "other")
    assert len(list_items(conn)) == 2
    assert [entry.id for entry in list_items(conn, status="pending", limit=1, offset=0)]

    delete_item(conn, item.id)
    assert get_item(conn, item.id) is None
    with pytest.raises(NotFoundError):
        delete_item(conn, item.id)
