from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from ..config import Config, default_config
from ..errors import NotFoundError, StoreIntegrityError, ValidationError
from ..models import Entity, EntityFilter, EntitySummary, GraphNeighborhood, Relationship
from ..utils import clamp_score, json_dumps, json_loads_or, log_event, new_id, utc_now_iso

logger = logging.getLogger("huntergraph.graph")

_ENTITY_COLUMNS = (
    "id, name, type, description, attributes_json, embedding, confidence_score, "
    "created_at, updated_at"
)
# Each edge carries (id, name, type) of both endpoints.
_RELATIONSHIP_SELECT = """
    SELECT r.id, r.source_entity_id, r.target_entity_id, r.relationship_type, r.strength,
        r.context, r.temporal_start, r.temporal_end, r.attributes_json, r.created_at,
        r.updated_at, s.name, s.type, t.name, t.type
    FROM relationships r
    LEFT JOIN entities s ON s.id = r.source_entity_id
    LEFT JOIN entities t ON t.id = r.target_entity_id
"""
_IMMUTABLE_ENTITY_FIELDS = ("id", "name", "type")


def create_entity(conn: Any, payload: dict[str, Any], config: Config | None = None) -> Entity:
    config = config or default_config()
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", field="name")
    entity_type = str(payload.get("type") or "").strip().lower()
    if not entity_type:
        raise ValidationError("type is required", field="type")
    if entity_type not in config.graph.entity_types:
        raise ValidationError(
            "unsupported entity type",
            field="type",
            value=entity_type,
            allowed=config.graph.entity_types,
        )
    description = _optional_text(payload.get("description"))
    attributes = _coerce_attributes(payload.get("attributes"))
    embedding = _coerce_embedding(payload.get("embedding"))
    confidence = payload.get("confidence_score")
    confidence_score = _score(confidence, "confidence_score") if confidence is not None else 0.0

    entity_id = new_id()
    now = utc_now_iso()
    conn.execute(
        f"""
        INSERT INTO entities
            (id, name, type, description, attributes_json, embedding, confidence_score,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, {_vector_placeholder(conn)}, ?, ?, ?)
        """,
        (
            entity_id,
            name,
            entity_type,
            description,
            json_dumps(attributes),
            _vector_literal(embedding),
            confidence_score,
            now,
            now,
        ),
    )
    conn.commit()
    log_event(
        logger,
        logging.INFO,
        "entity_created",
        entity_id=entity_id,
        type=entity_type,
        has_embedding=embedding is not None,
    )
    return _require_entity(conn, entity_id)


def get_entity(conn: Any, entity_id: str) -> Entity | None:
    cursor = conn.execute(
        f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE id = ?",
        (entity_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_entity(row)


def get_entities(
    conn: Any, query: EntityFilter | None = None, config: Config | None = None
) -> list[Entity]:
    config = config or default_config()
    query = query or EntityFilter()
    clauses: list[str] = []
    params: list[object] = []
    if query.type:
        clauses.append("type = ?")
        params.append(query.type.strip().lower())
    if query.search:
        clauses.append("LOWER(name) LIKE ? ESCAPE '!'")
        params.append(f"%{_escape_like(query.search.strip().lower())}%")

    if query.embedding is not None:
        embedding = _coerce_embedding(query.embedding)
        threshold = (
            query.threshold if query.threshold is not None else config.graph.similarity_threshold
        )
        limit = _positive_limit(query.limit, config.graph.similarity_limit)
        return _similar_entities(conn, embedding or [], float(threshold), limit, clauses, params)

    limit = _positive_limit(query.limit, config.graph.list_limit)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    cursor = conn.execute(
        f"""
        SELECT {_ENTITY_COLUMNS}
        FROM entities
        {where}
        ORDER BY name ASC, created_at ASC
        LIMIT ?
        """,
        (*params, limit),
    )
    return [_row_to_entity(row) for row in cursor.fetchall()]


def update_entity(conn: Any, entity_id: str, payload: dict[str, Any]) -> Entity:
    current = _require_entity(conn, entity_id)
    for field in _IMMUTABLE_ENTITY_FIELDS:
        if field in payload and payload[field] != getattr(current, field):
            raise ValidationError(
                f"{field} cannot be changed", field=field, entity_id=entity_id
            )

    confidence_score = current.confidence_score
    if payload.get("confidence_score") is not None:
        confidence_score = _score(payload["confidence_score"], "confidence_score")
    attributes = dict(current.attributes)
    if payload.get("attributes") is not None:
        attributes.update(_coerce_attributes(payload["attributes"]))
    description = current.description
    if "description" in payload:
        description = _optional_text(payload.get("description"))
    embedding = current.embedding
    if payload.get("embedding") is not None:
        embedding = _coerce_embedding(payload["embedding"])

    conn.execute(
        f"""
        UPDATE entities
        SET description = ?, attributes_json = ?, embedding = {_vector_placeholder(conn)},
            confidence_score = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            description,
            json_dumps(attributes),
            _vector_literal(embedding),
            confidence_score,
            utc_now_iso(),
            entity_id,
        ),
    )
    conn.commit()
    log_event(
        logger,
        logging.INFO,
        "entity_updated",
        entity_id=entity_id,
        confidence_score=confidence_score,
        attribute_keys=len(attributes),
    )
    return _require_entity(conn, entity_id)


def create_relationship(
    conn: Any, payload: dict[str, Any], config: Config | None = None
) -> Relationship:
    config = config or default_config()
    source_id = str(payload.get("source_entity_id") or "").strip()
    target_id = str(payload.get("target_entity_id") or "").strip()
    relationship_type = str(payload.get("relationship_type") or "").strip()
    if not source_id:
        raise ValidationError("source_entity_id is required", field="source_entity_id")
    if not target_id:
        raise ValidationError("target_entity_id is required", field="target_entity_id")
    if not relationship_type:
        raise ValidationError("relationship_type is required", field="relationship_type")

    strength_value = payload.get("strength")
    strength = (
        _score(strength_value, "strength")
        if strength_value is not None
        else config.graph.default_relationship_strength
    )
    temporal_start = _optional_text(payload.get("temporal_start"))
    temporal_end = _optional_text(payload.get("temporal_end"))
    _check_temporal_range(temporal_start, temporal_end)
    attributes = _coerce_attributes(payload.get("attributes"))

    # Endpoints are checked here so weak stores without foreign keys keep the invariant.
    for role, entity_id in (("source", source_id), ("target", target_id)):
        if not _entity_exists(conn, entity_id):
            raise NotFoundError(f"{role} entity not found", entity_id=entity_id, role=role)

    relationship_id = new_id()
    now = utc_now_iso()
    try:
        conn.execute(
            """
            INSERT INTO relationships
                (id, source_entity_id, target_entity_id, relationship_type, strength, context,
                 temporal_start, temporal_end, attributes_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                relationship_id,
                source_id,
                target_id,
                relationship_type,
                strength,
                _optional_text(payload.get("context")),
                temporal_start,
                temporal_end,
                json_dumps(attributes),
                now,
                now,
            ),
        )
        conn.commit()
    except StoreIntegrityError as exc:
        conn.rollback()
        raise NotFoundError(
            "relationship endpoint not found",
            source_entity_id=source_id,
            target_entity_id=target_id,
        ) from exc
    log_event(
        logger,
        logging.INFO,
        "relationship_created",
        relationship_id=relationship_id,
        source_entity_id=source_id,
        target_entity_id=target_id,
        type=relationship_type,
        strength=strength,
    )
    return _require_relationship(conn, relationship_id)


def get_relationships_for_entity(conn: Any, entity_id: str) -> list[Relationship]:
    if not _entity_exists(conn, entity_id):
        raise NotFoundError("entity not found", entity_id=entity_id)
    cursor = conn.execute(
        f"""
        {_RELATIONSHIP_SELECT}
        WHERE r.source_entity_id = ? OR r.target_entity_id = ?
        ORDER BY r.created_at ASC, r.id ASC
        """,
        (entity_id, entity_id),
    )
    return [_row_to_relationship(row) for row in cursor.fetchall()]


def list_relationships(
    conn: Any,
    source_id: str | None = None,
    target_id: str | None = None,
    relationship_type: str | None = None,
    limit: int | None = None,
    config: Config | None = None,
) -> list[Relationship]:
    config = config or default_config()
    clauses: list[str] = []
    params: list[object] = []
    if source_id:
        clauses.append("r.source_entity_id = ?")
        params.append(source_id)
    if target_id:
        clauses.append("r.target_entity_id = ?")
        params.append(target_id)
    if relationship_type:
        clauses.append("r.relationship_type = ?")
        params.append(relationship_type)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    cursor = conn.execute(
        f"""
        {_RELATIONSHIP_SELECT}
        {where}
        ORDER BY r.created_at DESC, r.id ASC
        LIMIT ?
        """,
        (*params, _positive_limit(limit, config.graph.list_limit)),
    )
    return [_row_to_relationship(row) for row in cursor.fetchall()]


def traverse(
    conn: Any, entity_id: str, depth: int = 1, config: Config | None = None
) -> GraphNeighborhood:
    """Walk edges in both directions from ``entity_id`` up to ``depth`` hops."""
    config = config or default_config()
    if depth < 1:
        raise ValidationError("depth must be at least 1", field="depth", value=depth)
    depth = min(depth, config.graph.max_traversal_depth)
    root = _require_entity(conn, entity_id)

    entities: dict[str, Entity] = {root.id: root}
    relationships: dict[str, Relationship] = {}
    frontier = [root.id]
    for _ in range(depth):
        next_frontier: list[str] = []
        for node_id in frontier:
            for edge in get_relationships_for_entity(conn, node_id):
                relationships.setdefault(edge.id, edge)
                for neighbour_id in (edge.source_entity_id, edge.target_entity_id):
                    if neighbour_id in entities:
                        continue
                    neighbour = get_entity(conn, neighbour_id)
                    if neighbour is None:
                        continue
                    entities[neighbour_id] = neighbour
                    next_frontier.append(neighbour_id)
        if not next_frontier:
            break
        frontier = next_frontier

    return GraphNeighborhood(
        root_id=root.id,
        depth=depth,
        entities=list(entities.values()),
        relationships=list(relationships.values()),
    )


def _similar_entities(
    conn: Any,
    embedding: list[float],
    threshold: float,
    limit: int,
    clauses: list[str],
    params: list[object],
) -> list[Entity]:
    if not embedding:
        raise ValidationError("embedding must not be empty", field="embedding")
    where_parts = ["embedding IS NOT NULL", *clauses]
    cursor = conn.execute(
        f"""
        SELECT {_ENTITY_COLUMNS}, similarity
        FROM (
            SELECT {_ENTITY_COLUMNS}, {_similarity_expression(conn)} AS similarity
            FROM entities
            WHERE {' AND '.join(where_parts)}
        ) AS ranked
        WHERE similarity >= ?
        ORDER BY similarity DESC
        LIMIT ?
        """,
        (_vector_literal(embedding), *params, threshold, limit),
    )
    return [_row_to_entity(row[:-1], similarity=float(row[-1])) for row in cursor.fetchall()]


def _similarity_expression(conn: Any) -> str:
    if getattr(conn, "backend", "sqlite") == "postgres":
        return "1 - (embedding <=> CAST(? AS vector))"
    return "vector_similarity(embedding, ?)"


def _vector_placeholder(conn: Any) -> str:
    if getattr(conn, "backend", "sqlite") == "postgres":
        return "CAST(? AS vector)"
    return "?"


def _vector_literal(embedding: list[float] | None) -> str | None:
    if embedding is None:
        return None
    return json.dumps([float(value) for value in embedding], separators=(",", ":"))


def _require_entity(conn: Any, entity_id: str) -> Entity:
    entity = get_entity(conn, entity_id)
    if entity is None:
        raise NotFoundError("entity not found", entity_id=entity_id)
    return entity


def _require_relationship(conn: Any, relationship_id: str) -> Relationship:
    cursor = conn.execute(
        f"{_RELATIONSHIP_SELECT} WHERE r.id = ?",
        (relationship_id,),
    )
    row = cursor.fetchone()
    if not row:
        raise NotFoundError("relationship not found", relationship_id=relationship_id)
    return _row_to_relationship(row)


def _entity_exists(conn: Any, entity_id: str) -> bool:
    cursor = conn.execute("SELECT 1 FROM entities WHERE id = ?", (entity_id,))
    return cursor.fetchone() is not None


def _check_temporal_range(start: str | None, end: str | None) -> None:
    parsed: dict[str, datetime] = {}
    for field, value in (("temporal_start", start), ("temporal_end", end)):
        if value is None:
            continue
        try:
            parsed[field] = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(
                f"{field} must be an ISO-8601 timestamp", field=field, value=value
            ) from exc
    if len(parsed) == 2:
        start_dt, end_dt = parsed["temporal_start"], parsed["temporal_end"]
        if (start_dt.tzinfo is None) != (end_dt.tzinfo is None):
            start_dt = start_dt.replace(tzinfo=None)
            end_dt = end_dt.replace(tzinfo=None)
        if start_dt > end_dt:
            raise ValidationError(
                "temporal_start must not be after temporal_end",
                temporal_start=start,
                temporal_end=end,
            )


def _score(value: Any, field: str) -> float:
    try:
        return clamp_score(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", field=field, value=value) from exc


def _coerce_attributes(value: Any) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("attributes must be an object", field="attributes")
    return {str(key): item for key, item in value.items()}


def _coerce_embedding(value: Any) -> list[float] | None:
    if value is None:
        return None
    if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
        raise ValidationError("embedding must be a list of numbers", field="embedding")
    try:
        return [float(item) for item in value]
    except (TypeError, ValueError) as exc:
        raise ValidationError("embedding must be a list of numbers", field="embedding") from exc


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _positive_limit(value: int | None, default: int) -> int:
    if value is None:
        return default
    limit = int(value)
    if limit < 1:
        raise ValidationError("limit must be positive", field="limit", value=value)
    return limit


def _escape_like(value: str) -> str:
    return value.replace("!", "!!").replace("%", "!%").replace("_", "!_")


def _row_to_entity(row: tuple, similarity: float | None = None) -> Entity:
    (
        entity_id,
        name,
        entity_type,
        description,
        attributes_json,
        embedding,
        confidence_score,
        created_at,
        updated_at,
    ) = row
    parsed_embedding = json_loads_or(embedding, None)
    return Entity(
        id=entity_id,
        name=name,
        type=entity_type,
        description=description,
        attributes=json_loads_or(attributes_json, {}),
        embedding=[float(value) for value in parsed_embedding] if parsed_embedding else None,
        confidence_score=float(confidence_score or 0),
        created_at=created_at,
        updated_at=updated_at,
        similarity=similarity,
    )


def _row_to_relationship(row: tuple) -> Relationship:
    (
        relationship_id,
        source_entity_id,
        target_entity_id,
        relationship_type,
        strength,
        context,
        temporal_start,
        temporal_end,
        attributes_json,
        created_at,
        updated_at,
        source_name,
        source_type,
        target_name,
        target_type,
    ) = row
    return Relationship(
        id=relationship_id,
        source_entity_id=source_entity_id,
        target_entity_id=target_entity_id,
        relationship_type=relationship_type,
        strength=float(strength),
        context=context,
        temporal_start=temporal_start,
        temporal_end=temporal_end,
        attributes=json_loads_or(attributes_json, {}),
        created_at=created_at,
        updated_at=updated_at,
        source_entity=_summary(source_entity_id, source_name, source_type),
        target_entity=_summary(target_entity_id, target_name, target_type),
    )


def _summary(entity_id: str, name: str | None, entity_type: str | None) -> EntitySummary | None:
    if name is None:
        return None
    return EntitySummary(id=entity_id, name=name, type=entity_type)
