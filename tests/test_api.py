from fastapi.testclient import TestClient

from huntergraph.api import app


def _seed(client):
    article = client.post(
        "/api/articles", json={"title": "Festival Recap", "content": "Crowds packed Main Street."}
    )
    assert article.status_code == 201
    partner = client.post(
        "/api/business-partners",
        json={"business_name": "Downtown Florist", "business_type": "retail", "credits_purchased": 10},
    )
    assert partner.status_code == 201
    return article.json()["id"], partner.json()["id"]


def test_health_reports_database():
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "healthy"
    assert payload["services"]["database"] == "healthy"

    detailed = client.get("/health/detailed")
    assert detailed.status_code == 200
    assert detailed.json()["database"]["statistics"]["articles"] == 0


def test_mention_and_credit_flow():
    client = TestClient(app)
    article_id, partner_id = _seed(client)

    mention = client.post(
        "/api/article-business-mentions",
        json={"article_id": article_id, "business_partner_id": partner_id, "relevance_score": 3},
    )
    assert mention.status_code == 201
    assert mention.json()["relevance_score"] == 1.0

    duplicate = client.post(
        "/api/article-business-mentions",
        json={"article_id": article_id, "business_partner_id": partner_id},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["mention_id"] == mention.json()["id"]

    debit = client.post(
        f"/api/business-partners/{partner_id}/credits/debit",
        json={"amount": 4, "description": "mention", "mention_id": mention.json()["id"]},
    )
    assert debit.status_code == 200
    assert debit.json()["credits_remaining"] == 6

    overdraw = client.post(
        f"/api/business-partners/{partner_id}/credits/debit",
        json={"amount": 10, "description": "too much"},
    )
    assert overdraw.status_code == 402
    assert overdraw.json()["error"] == "insufficient_credits"
    assert overdraw.json()["remaining"] == 6

    credits = client.get(f"/api/business-partners/{partner_id}/credits")
    assert credits.json()["remaining"] == 6
    assert credits.json()["monthly_allowance"] == 10

    reconcile = client.get(f"/api/business-partners/{partner_id}/credits/reconcile")
    assert reconcile.json()["balanced"] is True

    stats = client.get("/api/article-business-mentions/stats")
    assert stats.json()["total_mentions"] == 1
    assert stats.json()["mentions_by_business_type"]["retail"]["count"] == 1

    article = client.get(f"/api/articles/{article_id}")
    assert article.status_code == 200
    assert len(article.json()["business_mentions"]) == 1
    linked = article.json()["business_mentions"][0]
    assert linked["business_partner"]["business_name"] == "Downtown Florist"
    assert linked["article"]["title"] == "Festival Recap"

    assert client.put(f"/api/articles/{article_id}", json={"status": "published"}).status_code == 200
    backwards = client.put(f"/api/articles/{article_id}", json={"status": "draft"})
    assert backwards.status_code == 409
    assert backwards.json()["error"] == "invalid_transition"


def test_errors_map_to_status_codes():
    client = TestClient(app)
    assert client.get("/api/articles/missing").status_code == 404
    assert client.post("/api/articles", json={"title": "No content"}).status_code == 400
    response = client.post("/api/knowledge-graph/entities", json={"name": "X", "type": "ufo"})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    webhook = client.post("/api/webhooks/trigger-article-generation", json={})
    assert webhook.status_code == 400


def test_admin_routes_require_token(monkeypatch):
    monkeypatch.setenv("HG_ADMIN_TOKEN", "secret")
    client = TestClient(app)

    denied = client.post("/api/business-partners", json={"business_name": "Nope"})
    assert denied.status_code == 401

    allowed = client.post(
        "/api/business-partners",
        json={"business_name": "Yes"},
        headers={"X-Admin-Token": "secret"},
    )
    assert allowed.status_code == 201

    listing = client.get("/api/business-partners")
    assert [item["business_name"] for item in listing.json()] == ["Yes"]


def test_content_queue_routes():
    client = TestClient(app)
    assert client.get("/api/content-queue/next").json() == []

    created = client.post(
        "/api/content-queue",
        json={"title": "Road closures", "content": "one two  three", "relevance_score": 0.4},
    )
    assert created.status_code == 201
    item_id = created.json()["id"]
    assert created.json()["word_count"] == 3

    claimed = client.get("/api/content-queue/next", params={"claim": "true"})
    assert [item["id"] for item in claimed.json()] == [item_id]
    assert claimed.json()[0]["status"] == "processing"

    done = client.put(f"/api/content-queue/{item_id}/status", json={"status": "done"})
    assert done.status_code == 200
    back = client.put(f"/api/content-queue/{item_id}/status", json={"status": "pending"})
    assert back.status_code == 409

    assert client.delete(f"/api/content-queue/{item_id}").status_code == 200
    assert client.get(f"/api/content-queue/{item_id}").status_code == 404


def test_knowledge_graph_routes():
    client = TestClient(app)
    first = client.post(
        "/api/knowledge-graph/entities",
        json={"name": "Civic Theater", "type": "business", "embedding": [1.0, 0.0]},
    ).json()
    second = client.post(
        "/api/knowledge-graph/entities",
        json={"name": "Springfield", "type": "place", "embedding": [0.0, 1.0]},
    ).json()
    edge = client.post(
        "/api/knowledge-graph/relationships",
        json={
            "source_entity_id": first["id"],
            "target_entity_id": second["id"],
            "relationship_type": "headquartered_in",
        },
    )
    assert edge.status_code == 201
    assert edge.json()["strength"] == 0.5

    similar = client.post("/api/knowledge-graph/entities/similar", json={"embedding": [1.0, 0.0]})
    assert [item["id"] for item in similar.json()] == [first["id"]]

    walk = client.get(f"/api/knowledge-graph/entities/{first['id']}/traverse", params={"depth": 1})
    assert {item["name"] for item in walk.json()["entities"]} == {"Civic Theater", "Springfield"}

    missing = client.post(
        "/api/knowledge-graph/relationships",
        json={"source_entity_id": first["id"], "target_entity_id": "nope", "relationship_type": "x"},
    )
    assert missing.status_code == 404
