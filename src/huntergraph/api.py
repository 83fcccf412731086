from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Iterator

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import ConfigError, bootstrap_runtime_config, get_state_db_path, load_runtime_config
from .db import StoreHandles, open_store
from .errors import (
    ConflictError,
    HunterGraphError,
    InsufficientCreditsError,
    InvalidTransitionError,
    NotFoundError,
    PartialFailure,
    PrivilegeError,
    StoreUnavailable,
    ValidationError,
)
from .models import EntityFilter
from .services import articles_service, graph_service, ledger_service, mentions_service
from .services import partners_service, queue_service
from .storage import get_db_stats, health_check
from .utils import configure_logging, log_event

logger = configure_logging("huntergraph.api")

app = FastAPI(title="HunterGraph API")

_STATUS_BY_ERROR: tuple[tuple[type[HunterGraphError], int], ...] = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidTransitionError, 409),
    (InsufficientCreditsError, 402),
    (PartialFailure, 500),
    (PrivilegeError, 403),
    (StoreUnavailable, 503),
)


@app.exception_handler(HunterGraphError)
async def _domain_error_handler(request: Request, exc: HunterGraphError) -> JSONResponse:
    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break
    body = exc.to_dict()
    if isinstance(exc, PartialFailure) and exc.context.get("partner_id"):
        body["reconcile"] = f"/api/business-partners/{exc.context['partner_id']}/credits/reconcile"
    level = logging.ERROR if status_code >= 500 else logging.INFO
    log_event(
        logger,
        level,
        "request_failed",
        path=request.url.path,
        status=status_code,
        error=exc.code,
    )
    return JSONResponse(body, status_code=status_code)


@app.exception_handler(ConfigError)
async def _config_error_handler(request: Request, exc: ConfigError) -> JSONResponse:
    return JSONResponse({"error": "config_error", "message": str(exc)}, status_code=400)


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("HG_ADMIN_TOKEN")
    if not token:
        return
    if request.headers.get("X-Admin-Token") != token:
        raise HTTPException(status_code=401, detail="unauthorized")


def _get_store() -> Iterator[StoreHandles]:
    store = open_store(get_state_db_path())
    try:
        bootstrap_runtime_config(store.admin or store.client)
        yield store
    finally:
        store.close()


def _get_version() -> str:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("huntergraph")
    except PackageNotFoundError:
        return "unknown"


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class ArticleRequest(BaseModel):
    title: str | None = None
    content: str | None = None
    word_count: int | None = None
    category: str | None = None
    status: str | None = None
    hunter_voice_score: float | None = None
    quality_score: float | None = None
    relevance_score: float | None = None
    engagement_potential: float | None = None
    source_url: str | None = None
    source_title: str | None = None
    image_url: str | None = None
    image_alt_text: str | None = None
    tags: list[str] | str | None = None
    published_at: str | None = None
    app_published: bool | None = None
    social_media_posted: bool | None = None
    view_count: int | None = None
    engagement_count: int | None = None


class EntityRequest(BaseModel):
    name: str | None = None
    type: str | None = None
    description: str | None = None
    attributes: dict[str, object] | None = None
    embedding: list[float] | None = None
    confidence_score: float | None = None


class EntityUpdateRequest(BaseModel):
    description: str | None = None
    attributes: dict[str, object] | None = None
    embedding: list[float] | None = None
    confidence_score: float | None = None


class SimilarityRequest(BaseModel):
    embedding: list[float]
    threshold: float | None = None
    limit: int | None = None
    type: str | None = None


class RelationshipRequest(BaseModel):
    source_entity_id: str | None = None
    target_entity_id: str | None = None
    relationship_type: str | None = None
    strength: float | None = None
    context: str | None = None
    temporal_start: str | None = None
    temporal_end: str | None = None
    attributes: dict[str, object] | None = None


class PartnerRequest(BaseModel):
    business_name: str | None = None
    business_type: str | None = None
    entity_id: str | None = None
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    partnership_tier: str | None = None
    monthly_fee: float | None = None
    credits_purchased: int | None = None
    mention_credits_total: int | None = None
    contract_start_date: str | None = None
    contract_end_date: str | None = None
    auto_renewal: bool | None = None
    status: str | None = None
    notes: str | None = None


class CreditChangeRequest(BaseModel):
    amount: int
    description: str | None = None
    mention_id: str | None = None


class MentionRequest(BaseModel):
    article_id: str | None = None
    business_partner_id: str | None = None
    mention_context: str | None = None
    relevance_score: float | None = None
    mention_type: str | None = None


class MentionUpdateRequest(BaseModel):
    mention_context: str | None = None
    relevance_score: float | None = None
    mention_type: str | None = None
    verified: bool | None = None


class QueueRequest(BaseModel):
    title: str | None = None
    content: str | None = None
    source_url: str | None = None
    source_type: str | None = None
    priority: str | None = None
    relevance_score: float | None = None
    scheduled_for: str | None = None


class QueueUpdateRequest(BaseModel):
    priority: str | None = None
    scheduled_for: str | None = None
    relevance_score: float | None = None


class QueueStatusRequest(BaseModel):
    status: str
    processed_at: str | None = None


class ArticleGenerationWebhook(BaseModel):
    content_id: str | None = None


class BusinessMentionsWebhook(BaseModel):
    article_id: str | None = None


class WorkflowHealthWebhook(BaseModel):
    workflow_name: str | None = None
    execution_id: str | None = None
    status: str | None = None


class ArticlePublishedWebhook(BaseModel):
    article_id: str | None = None
    publication_url: str | None = None
    published_at: str | None = None


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "HunterGraph API"}


@app.get("/health")
def health() -> JSONResponse:
    body: dict[str, object] = {
        "status": "healthy",
        "timestamp": _now(),
        "version": _get_version(),
        "services": {"api": "healthy", "database": "unknown"},
    }
    try:
        store = open_store(get_state_db_path())
        try:
            body["services"]["database"] = "healthy"
            body["database"] = health_check(store.client)
        finally:
            store.close()
    except Exception as exc:  # noqa: BLE001
        body["status"] = "degraded"
        body["services"] = {"api": "healthy", "database": "unhealthy", "database_error": str(exc)}
        log_event(logger, logging.ERROR, "health_check_failed", error=str(exc))
    return JSONResponse(body, status_code=200 if body["status"] == "healthy" else 503)


@app.get("/health/detailed")
def health_detailed() -> JSONResponse:
    try:
        store = open_store(get_state_db_path())
        try:
            check = health_check(store.client)
            stats = get_db_stats(store.client)
            stats["mentions_by_business_type"] = mentions_service.get_stats_by_business_type(
                store.client
            )
        finally:
            store.close()
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.ERROR, "health_check_failed", error=str(exc))
        return JSONResponse(
            {"status": "unhealthy", "timestamp": _now(), "error": str(exc)}, status_code=503
        )
    return JSONResponse(
        {
            "status": "healthy",
            "timestamp": _now(),
            "version": _get_version(),
            "database": {"connected": True, **check, "statistics": stats},
        }
    )


articles_router = APIRouter(prefix="/api/articles")


@articles_router.get("")
def articles_list(
    status: str | None = None,
    category: str | None = None,
    published: bool | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int | None = None,
    store: StoreHandles = Depends(_get_store),
):
    return articles_service.list_articles(
        store.client,
        status=status,
        category=category,
        published=published,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
        config=load_runtime_config(store.client),
    )


@articles_router.get("/{article_id}")
def articles_read(article_id: str, store: StoreHandles = Depends(_get_store)):
    article = articles_service.get_article(store.client, article_id)
    if article is None:
        raise NotFoundError("article not found", article_id=article_id)
    mentions = mentions_service.list_mentions(store.client, article_id=article_id)
    return {"article": article, "business_mentions": mentions}


@articles_router.post("", status_code=201)
def articles_create(payload: ArticleRequest, store: StoreHandles = Depends(_get_store)):
    return articles_service.create_article(store.client, payload.model_dump(exclude_unset=True))


@articles_router.put("/{article_id}", dependencies=[Depends(_require_admin_token)])
def articles_update(
    article_id: str, payload: ArticleRequest, store: StoreHandles = Depends(_get_store)
):
    return articles_service.update_article(
        store.require_admin(), article_id, payload.model_dump(exclude_unset=True)
    )


graph_router = APIRouter(prefix="/api/knowledge-graph")


@graph_router.get("/entities")
def entities_list(
    type: str | None = None,
    search: str | None = None,
    limit: int | None = None,
    store: StoreHandles = Depends(_get_store),
):
    return graph_service.get_entities(
        store.client,
        EntityFilter(type=type, search=search, limit=limit),
        config=load_runtime_config(store.client),
    )


@graph_router.post("/entities", status_code=201)
def entities_create(payload: EntityRequest, store: StoreHandles = Depends(_get_store)):
    return graph_service.create_entity(
        store.client,
        payload.model_dump(exclude_unset=True),
        config=load_runtime_config(store.client),
    )


@graph_router.post("/entities/similar")
def entities_similar(payload: SimilarityRequest, store: StoreHandles = Depends(_get_store)):
    return graph_service.get_entities(
        store.client,
        EntityFilter(
            type=payload.type,
            embedding=payload.embedding,
            threshold=payload.threshold,
            limit=payload.limit,
        ),
        config=load_runtime_config(store.client),
    )


@graph_router.get("/entities/{entity_id}")
def entities_read(entity_id: str, store: StoreHandles = Depends(_get_store)):
    entity = graph_service.get_entity(store.client, entity_id)
    if entity is None:
        raise NotFoundError("entity not found", entity_id=entity_id)
    return entity


@graph_router.patch("/entities/{entity_id}")
def entities_update(
    entity_id: str, payload: EntityUpdateRequest, store: StoreHandles = Depends(_get_store)
):
    return graph_service.update_entity(
        store.client, entity_id, payload.model_dump(exclude_unset=True)
    )


@graph_router.get("/entities/{entity_id}/relationships")
def entities_relationships(entity_id: str, store: StoreHandles = Depends(_get_store)):
    return graph_service.get_relationships_for_entity(store.client, entity_id)


@graph_router.get("/entities/{entity_id}/traverse")
def entities_traverse(entity_id: str, depth: int = 1, store: StoreHandles = Depends(_get_store)):
    return graph_service.traverse(
        store.client, entity_id, depth=depth, config=load_runtime_config(store.client)
    )


@graph_router.get("/relationships")
def relationships_list(
    source_id: str | None = None,
    target_id: str | None = None,
    relationship_type: str | None = None,
    limit: int | None = None,
    store: StoreHandles = Depends(_get_store),
):
    return graph_service.list_relationships(
        store.client,
        source_id=source_id,
        target_id=target_id,
        relationship_type=relationship_type,
        limit=limit,
        config=load_runtime_config(store.client),
    )


@graph_router.post("/relationships", status_code=201)
def relationships_create(payload: RelationshipRequest, store: StoreHandles = Depends(_get_store)):
    return graph_service.create_relationship(
        store.client,
        payload.model_dump(exclude_unset=True),
        config=load_runtime_config(store.client),
    )


partners_router = APIRouter(prefix="/api/business-partners")


@partners_router.get("")
def partners_list(
    status: str | None = "active",
    tier: str | None = None,
    limit: int = 20,
    store: StoreHandles = Depends(_get_store),
):
    return partners_service.list_partners(store.client, status=status, tier=tier, limit=limit)


@partners_router.post("", status_code=201, dependencies=[Depends(_require_admin_token)])
def partners_create(payload: PartnerRequest, store: StoreHandles = Depends(_get_store)):
    return partners_service.create_partner(
        store.require_admin(), payload.model_dump(exclude_unset=True)
    )


@partners_router.get("/{partner_id}")
def partners_read(partner_id: str, store: StoreHandles = Depends(_get_store)):
    return partners_service.require_partner(store.client, partner_id)


@partners_router.get("/{partner_id}/credits")
def partners_credits(partner_id: str, store: StoreHandles = Depends(_get_store)):
    return ledger_service.get_credits(
        store.client, partner_id, config=load_runtime_config(store.client)
    )


@partners_router.post("/{partner_id}/credits/debit", dependencies=[Depends(_require_admin_token)])
def partners_debit(
    partner_id: str, payload: CreditChangeRequest, store: StoreHandles = Depends(_get_store)
):
    return ledger_service.debit_credits(
        store.require_admin(),
        partner_id,
        payload.amount,
        payload.description,
        mention_id=payload.mention_id,
    )


@partners_router.post("/{partner_id}/credits/top-up", dependencies=[Depends(_require_admin_token)])
def partners_top_up(
    partner_id: str, payload: CreditChangeRequest, store: StoreHandles = Depends(_get_store)
):
    return ledger_service.top_up_credits(
        store.require_admin(), partner_id, payload.amount, payload.description
    )


@partners_router.get("/{partner_id}/credits/usage")
def partners_usage(
    partner_id: str, limit: int | None = None, store: StoreHandles = Depends(_get_store)
):
    return ledger_service.list_usage(
        store.client, partner_id, limit=limit, config=load_runtime_config(store.client)
    )


@partners_router.get("/{partner_id}/credits/reconcile")
def partners_reconcile(partner_id: str, store: StoreHandles = Depends(_get_store)):
    result = ledger_service.reconcile(store.client, partner_id)
    return {
        "partner_id": result.partner_id,
        "purchased": result.purchased,
        "remaining": result.remaining,
        "logged_usage": result.logged_usage,
        "discrepancy": result.discrepancy,
        "balanced": result.balanced,
    }


mentions_router = APIRouter(prefix="/api/article-business-mentions")


@mentions_router.get("")
def mentions_list(
    article_id: str | None = None,
    business_partner_id: str | None = None,
    limit: int | None = None,
    offset: int = 0,
    store: StoreHandles = Depends(_get_store),
):
    return mentions_service.list_mentions(
        store.client,
        article_id=article_id,
        partner_id=business_partner_id,
        limit=limit,
        offset=offset,
        config=load_runtime_config(store.client),
    )


@mentions_router.get("/stats")
def mentions_stats(store: StoreHandles = Depends(_get_store)) -> dict[str, object]:
    return mentions_service.get_mention_stats(store.client)


@mentions_router.post("", status_code=201)
def mentions_create(payload: MentionRequest, store: StoreHandles = Depends(_get_store)):
    return mentions_service.create_mention(
        store.client,
        payload.article_id,
        payload.business_partner_id,
        context=payload.mention_context,
        relevance_score=payload.relevance_score,
        mention_type=payload.mention_type,
        config=load_runtime_config(store.client),
    )


@mentions_router.get("/{mention_id}")
def mentions_read(mention_id: str, store: StoreHandles = Depends(_get_store)):
    return mentions_service.require_mention(store.client, mention_id)


@mentions_router.put("/{mention_id}")
def mentions_update(
    mention_id: str, payload: MentionUpdateRequest, store: StoreHandles = Depends(_get_store)
):
    return mentions_service.update_mention(
        store.client, mention_id, payload.model_dump(exclude_unset=True)
    )


@mentions_router.delete("/{mention_id}")
def mentions_delete(mention_id: str, store: StoreHandles = Depends(_get_store)) -> dict[str, str]:
    mentions_service.delete_mention(store.client, mention_id)
    return {"status": "deleted"}


queue_router = APIRouter(prefix="/api/content-queue")


@queue_router.get("")
def queue_list(
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
    store: StoreHandles = Depends(_get_store),
):
    return queue_service.list_items(store.client, status=status, limit=limit, offset=offset)


@queue_router.get("/next")
def queue_next(
    limit: int | None = None,
    claim: bool = False,
    store: StoreHandles = Depends(_get_store),
):
    return queue_service.dequeue_next(
        store.client, limit=limit, claim=claim, config=load_runtime_config(store.client)
    )


@queue_router.post("", status_code=201)
def queue_create(payload: QueueRequest, store: StoreHandles = Depends(_get_store)):
    return queue_service.enqueue(
        store.client,
        payload.model_dump(exclude_unset=True),
        config=load_runtime_config(store.client),
    )


@queue_router.get("/{item_id}")
def queue_read(item_id: str, store: StoreHandles = Depends(_get_store)):
    return queue_service.require_item(store.client, item_id)


@queue_router.patch("/{item_id}")
def queue_update(
    item_id: str, payload: QueueUpdateRequest, store: StoreHandles = Depends(_get_store)
):
    return queue_service.update_item(store.client, item_id, payload.model_dump(exclude_unset=True))


@queue_router.put("/{item_id}/status")
def queue_status(
    item_id: str, payload: QueueStatusRequest, store: StoreHandles = Depends(_get_store)
):
    return queue_service.update_status(
        store.client, item_id, payload.status, processed_at=payload.processed_at
    )


@queue_router.delete("/{item_id}")
def queue_delete(item_id: str, store: StoreHandles = Depends(_get_store)) -> dict[str, str]:
    queue_service.delete_item(store.client, item_id)
    return {"status": "deleted"}


webhooks_router = APIRouter(prefix="/api/webhooks")


@webhooks_router.post("/trigger-article-generation")
def webhook_article_generation(payload: ArticleGenerationWebhook) -> dict[str, object]:
    if not payload.content_id:
        raise ValidationError("content_id is required", field="content_id")
    log_event(logger, logging.INFO, "webhook_article_generation", content_id=payload.content_id)
    return {"status": "triggered", "content_id": payload.content_id, "timestamp": _now()}


@webhooks_router.post("/trigger-business-mentions")
def webhook_business_mentions(payload: BusinessMentionsWebhook) -> dict[str, object]:
    if not payload.article_id:
        raise ValidationError("article_id is required", field="article_id")
    log_event(logger, logging.INFO, "webhook_business_mentions", article_id=payload.article_id)
    return {"status": "triggered", "article_id": payload.article_id, "timestamp": _now()}


@webhooks_router.post("/n8n-health")
def webhook_workflow_health(payload: WorkflowHealthWebhook) -> dict[str, object]:
    log_event(
        logger,
        logging.INFO,
        "webhook_workflow_health",
        workflow=payload.workflow_name,
        execution_id=payload.execution_id,
        status=payload.status,
    )
    return {**payload.model_dump(), "api_status": "healthy", "timestamp": _now()}


@webhooks_router.post("/article-published")
def webhook_article_published(payload: ArticlePublishedWebhook) -> dict[str, object]:
    if not payload.article_id:
        raise ValidationError("article_id is required", field="article_id")
    log_event(
        logger,
        logging.INFO,
        "webhook_article_published",
        article_id=payload.article_id,
        publication_url=payload.publication_url,
    )
    return {**payload.model_dump(), "status": "processed", "timestamp": _now()}


app.include_router(articles_router)
app.include_router(graph_router)
app.include_router(partners_router)
app.include_router(mentions_router)
app.include_router(queue_router)
app.include_router(webhooks_router)
