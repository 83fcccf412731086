from __future__ import annotations

from dataclasses import dataclass, field

ENTITY_TYPES = (
    "person",
    "organization",
    "place",
    "event",
    "business",
    "topic",
    "product",
    "other",
)

ARTICLE_CATEGORIES = (
    "breaking_news",
    "community_events",
    "business",
    "government",
    "schools",
    "development",
    "lifestyle",
    "weather",
    "traffic",
)

ARTICLE_STATUSES = ("draft", "published", "archived")

PARTNERSHIP_TIERS = ("bronze", "silver", "gold", "platinum")

PARTNER_STATUSES = ("active", "inactive")

QUEUE_STATUSES = ("pending", "processing", "done", "failed")

QUEUE_PRIORITIES = ("low", "medium", "high", "urgent")


@dataclass(frozen=True)
class Entity:
    id: str
    name: str
    type: str
    description: str | None
    attributes: dict[str, object]
    embedding: list[float] | None
    confidence_score: float
    created_at: str
    updated_at: str
    similarity: float | None = None


@dataclass(frozen=True)
class EntityFilter:
    """Query options for listing entities.

    ``search`` is a case-insensitive substring match on the name. When
    ``embedding`` is set the store's similarity operator ranks results and
    ``threshold``/``limit`` bound them; otherwise ``limit`` caps a name-ordered
    listing.
    """

    type: str | None = None
    search: str | None = None
    embedding: list[float] | None = None
    threshold: float | None = None
    limit: int | None = None


@dataclass(frozen=True)
class EntitySummary:
    id: str
    name: str
    type: str
    description: str | None = None


@dataclass(frozen=True)
class Relationship:
    id: str
    source_entity_id: str
    target_entity_id: str
    relationship_type: str
    strength: float
    context: str | None
    temporal_start: str | None
    temporal_end: str | None
    attributes: dict[str, object]
    created_at: str
    updated_at: str
    source_entity: EntitySummary | None = None
    target_entity: EntitySummary | None = None


@dataclass(frozen=True)
class GraphNeighborhood:
    root_id: str
    depth: int
    entities: list[Entity] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)


@dataclass(frozen=True)
class Article:
    id: str
    title: str
    content: str
    word_count: int
    category: str | None
    status: str
    hunter_voice_score: float
    quality_score: float
    relevance_score: float
    engagement_potential: float | None
    source_url: str | None
    source_title: str | None
    image_url: str | None
    image_alt_text: str | None
    tags: list[str]
    published_at: str | None
    app_published: bool
    app_published_at: str | None
    social_media_posted: bool
    view_count: int
    engagement_count: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class BusinessPartner:
    id: str
    entity_id: str | None
    business_name: str
    business_type: str | None
    contact_name: str | None
    contact_email: str | None
    contact_phone: str | None
    partnership_tier: str
    monthly_fee: float | None
    credits_purchased: int
    credits_remaining: int
    contract_start_date: str | None
    contract_end_date: str | None
    auto_renewal: bool
    status: str
    notes: str | None
    created_at: str
    updated_at: str
    entity: EntitySummary | None = None


@dataclass(frozen=True)
class ArticleSummary:
    id: str
    title: str
    created_at: str


@dataclass(frozen=True)
class PartnerSummary:
    id: str
    business_name: str
    business_type: str | None


@dataclass(frozen=True)
class ArticleBusinessMention:
    id: str
    article_id: str
    business_partner_id: str
    mention_context: str | None
    relevance_score: float
    mention_type: str
    verified: bool
    credits_charged: int
    metadata: dict[str, object]
    created_at: str
    updated_at: str
    article: ArticleSummary | None = None
    business_partner: PartnerSummary | None = None


@dataclass(frozen=True)
class CreditUsageLogEntry:
    id: str
    business_partner_id: str
    amount: int
    description: str | None
    mention_id: str | None
    balance_after: int | None
    created_at: str


@dataclass(frozen=True)
class CreditBalance:
    partner_id: str
    remaining: int
    purchased: int
    monthly_allowance: int


@dataclass(frozen=True)
class LedgerReconciliation:
    partner_id: str
    purchased: int
    remaining: int
    logged_usage: int
    discrepancy: int

    @property
    def balanced(self) -> bool:
        return self.discrepancy == 0


@dataclass(frozen=True)
class ContentQueueItem:
    id: str
    title: str
    content: str
    word_count: int
    source_url: str | None
    source_type: str
    priority: str
    relevance_score: float
    status: str
    scheduled_for: str | None
    processed_at: str | None
    metadata: dict[str, object]
    created_at: str
    updated_at: str
