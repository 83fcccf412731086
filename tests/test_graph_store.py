import pytest

from huntergraph.config import DEFAULT_CONFIG, build_config
from huntergraph.errors import NotFoundError, ValidationError
from huntergraph.models import EntityFilter
from huntergraph.services.graph_service import (
    create_entity,
    create_relationship,
    get_entities,
    get_entity,
    get_relationships_for_entity,
    list_relationships,
    traverse,
    update_entity,
)
from huntergraph.storage import init_db


def _entity(conn, name, entity_type="business", **extra):
    return create_entity(conn, {"name": name, "type": entity_type, **extra})


def test_create_entity_clamps_confidence_and_stamps_times(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    entity = _entity(
        conn,
        "Bass Pro Shops",
        attributes={"city": "Springfield"},
        confidence_score=1.7,
    )
    assert entity.id
    assert entity.type == "business"
    assert entity.confidence_score == 1.0
    assert entity.attributes == {"city": "Springfield"}
    assert entity.created_at == entity.updated_at
    assert get_entity(conn, entity.id) == entity


def test_create_entity_requires_name_and_known_type(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(ValidationError):
        create_entity(conn, {"name": "  ", "type": "business"})
    with pytest.raises(ValidationError) as excinfo:
        create_entity(conn, {"name": "Pine Valley", "type": "spaceship"})
    assert excinfo.value.context["field"] == "type"
    assert conn.execute("SELECT COUNT(*) FROM entities").fetchone()[0] == 0


def test_get_entities_filters_by_type_and_substring(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _entity(conn, "Dan's Harbor Grill")
    _entity(conn, "Harbor Park", entity_type="place")
    _entity(conn, "50% Off Furniture")
    _entity(conn, "500 Furniture Deals")

    names = [item.name for item in get_entities(conn, EntityFilter(search="harbor"))]
    assert names == ["Dan's Harbor Grill", "Harbor Park"]

    places = get_entities(conn, EntityFilter(type="place", search="HARBOR"))
    assert [item.name for item in places] == ["Harbor Park"]

    literal = get_entities(conn, EntityFilter(search="50%"))
    assert [item.name for item in literal] == ["50% Off Furniture"]


def test_similarity_search_ranks_and_applies_threshold(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    exact = _entity(conn, "City Hall", embedding=[1.0, 0.0, 0.0])
    near = _entity(conn, "Town Hall Annex", embedding=[0.9, 0.1, 0.0])
    _entity(conn, "Fire Station 3", embedding=[0.0, 1.0, 0.0])
    _entity(conn, "No Vector Inc")

    results = get_entities(conn, EntityFilter(embedding=[1.0, 0.0, 0.0]))
    assert [item.id for item in results] == [exact.id, near.id]
    assert results[0].similarity == pytest.approx(1.0)
    assert results[1].similarity == pytest.approx(0.9 / (0.82 ** 0.5))

    limited = get_entities(conn, EntityFilter(embedding=[1.0, 0.0, 0.0], limit=1))
    assert [item.id for item in limited] == [exact.id]

    loose = get_entities(conn, EntityFilter(embedding=[1.0, 0.0, 0.0], threshold=0.0))
    assert len(loose) == 3


def test_update_entity_merges_attributes_and_keeps_identity(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    entity = _entity(conn, "Hometown Furniture", attributes={"city": "West Point"}, confidence_score=0.4)

    updated = update_entity(
        conn,
        entity.id,
        {"attributes": {"state": "MS"}, "confidence_score": -3, "description": "furniture retailer"},
    )
    assert updated.attributes == {"city": "West Point", "state": "MS"}
    assert updated.confidence_score == 0.0
    assert updated.description == "furniture retailer"
    assert updated.name == "Hometown Furniture"

    with pytest.raises(ValidationError):
        update_entity(conn, entity.id, {"name": "Furniture Barn"})
    with pytest.raises(NotFoundError):
        update_entity(conn, "missing", {"confidence_score": 0.5})


def test_relationship_requires_existing_endpoints(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    source = _entity(conn, "Chamber of Commerce")

    with pytest.raises(NotFoundError) as excinfo:
        create_relationship(
            conn,
            {
                "source_entity_id": source.id,
                "target_entity_id": "does-not-exist",
                "relationship_type": "sponsors",
            },
        )
    assert excinfo.value.context["role"] == "target"
    assert conn.execute("SELECT COUNT(*) FROM relationships").fetchone()[0] == 0


def test_relationship_strength_default_clamp_and_temporal_range(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    source = _entity(conn, "Chamber of Commerce")
    target = _entity(conn, "Riverfront Park", entity_type="place")

    default = create_relationship(
        conn,
        {
            "source_entity_id": source.id,
            "target_entity_id": target.id,
            "relationship_type": "located_near",
        },
    )
    assert default.strength == 0.5
    assert default.source_entity.name == "Chamber of Commerce"
    assert default.target_entity.type == "place"

    strong = create_relationship(
        conn,
        {
            "source_entity_id": source.id,
            "target_entity_id": target.id,
            "relationship_type": "hosts_events_at",
            "strength": 4,
            "temporal_start": "2024-04-01",
            "temporal_end": "2024-10-31",
        },
    )
    assert strong.strength == 1.0

    with pytest.raises(ValidationError):
        create_relationship(
            conn,
            {
                "source_entity_id": source.id,
                "target_entity_id": target.id,
                "relationship_type": "hosts_events_at",
                "temporal_start": "2024-11-01",
                "temporal_end": "2024-10-31",
            },
        )


def test_relationships_for_entity_are_symmetric(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    a = _entity(conn, "A")
    b = _entity(conn, "B")
    c = _entity(conn, "C")
    ab = create_relationship(
        conn, {"source_entity_id": a.id, "target_entity_id": b.id, "relationship_type": "supplies"}
    )
    create_relationship(
        conn, {"source_entity_id": a.id, "target_entity_id": c.id, "relationship_type": "supplies"}
    )

    assert [edge.id for edge in get_relationships_for_entity(conn, b.id)] == [ab.id]
    assert len(get_relationships_for_entity(conn, a.id)) == 2
    assert [edge.id for edge in list_relationships(conn, target_id=b.id)] == [ab.id]
    with pytest.raises(NotFoundError):
        get_relationships_for_entity(conn, "missing")


def test_traverse_walks_breadth_first_up_to_configured_depth(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    chain = [_entity(conn, name) for name in ("A", "B", "C", "D")]
    for left, right in zip(chain, chain[1:]):
        create_relationship(
            conn,
            {"source_entity_id": left.id, "target_entity_id": right.id, "relationship_type": "next"},
        )

    one = traverse(conn, chain[0].id, depth=1)
    assert {entity.name for entity in one.entities} == {"A", "B"}
    assert len(one.relationships) == 1

    two = traverse(conn, chain[0].id, depth=2)
    assert {entity.name for entity in two.entities} == {"A", "B", "C"}

    raw = dict(DEFAULT_CONFIG)
    raw["graph"] = {**DEFAULT_CONFIG["graph"], "max_traversal_depth": 2}
    capped = traverse(conn, chain[0].id, depth=10, config=build_config(raw))
    assert capped.depth == 2
    assert {entity.name for entity in capped.entities} == {"A", "B", "C"}

    with pytest.raises(ValidationError):
        traverse(conn, chain[0].id, depth=0)


def test_relationship_reads_carry_endpoint_summaries(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    council = _entity(conn, "City Council", entity_type="organization")
    mayor = _entity(conn, "Mayor Reyes", entity_type="person")
    create_relationship(
        conn,
        {
            "source_entity_id": mayor.id,
            "target_entity_id": council.id,
            "relationship_type": "chairs",
        },
    )

    for edge in get_relationships_for_entity(conn, council.id) + list_relationships(conn):
        assert (edge.source_entity.id, edge.source_entity.name, edge.source_entity.type) == (
            mayor.id,
            "Mayor Reyes",
            "person",
        )
        assert edge.target_entity.name == "City Council"
