import json

from huntergraph.cli import main
from huntergraph.config import get_state_db_path
from huntergraph.db import ROLE_ADMIN, connect_db
from huntergraph.services.partners_service import create_partner


def _partner(credits):
    admin = connect_db(get_state_db_path(), role=ROLE_ADMIN)
    try:
        return create_partner(admin, {"business_name": "Lakeside Dental", "credits_purchased": credits})
    finally:
        admin.close()


def test_db_migrate_and_stats(capsys):
    assert main(["db", "migrate"]) == 0
    capsys.readouterr()
    assert main(["stats"]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["content_queue"] == 0
    assert stats["credits_remaining_total"] == 0


def test_config_set_and_show(capsys):
    assert main(["config", "set", "queue.dequeue_limit", "5"]) == 0
    capsys.readouterr()
    assert main(["config", "show"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["queue"]["dequeue_limit"] == 5

    assert main(["config", "set", "queue.dequeue_limit", "many"]) == 1
    assert main(["config", "set", "nowhere.key", "1"]) == 1


def test_queue_add_and_next(capsys):
    assert main(["queue", "add", "--title", "Council preview", "--content", "council meets tonight"]) == 0
    item_id = capsys.readouterr().out.strip()
    assert main(["queue", "next", "--limit", "5"]) == 0
    items = json.loads(capsys.readouterr().out)
    assert [item["id"] for item in items] == [item_id]
    assert items[0]["word_count"] == 3


def test_credits_commands(capsys):
    main(["db", "migrate"])
    partner = _partner(credits=10)
    capsys.readouterr()

    assert main(["credits", "debit", partner.id, "4", "--description", "mention"]) == 0
    assert capsys.readouterr().out.strip() == "6"
    assert main(["credits", "debit", partner.id, "10"]) == 1
    assert main(["credits", "topup", partner.id, "5"]) == 0
    assert capsys.readouterr().out.strip() == "11"

    assert main(["credits", "show", partner.id]) == 0
    balance = json.loads(capsys.readouterr().out)
    assert balance["remaining"] == 11
    assert balance["purchased"] == 15

    assert main(["credits", "reconcile", partner.id]) == 0
    assert json.loads(capsys.readouterr().out)["discrepancy"] == 0
