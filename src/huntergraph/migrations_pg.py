from __future__ import annotations

import logging

from .utils import utc_now_iso

_STATEMENTS: list[tuple[str, list[str]]] = [
    (
        "pg_001_settings",
        [
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
        ],
    ),
    (
        "pg_002_knowledge_graph",
        [
            "CREATE EXTENSION IF NOT EXISTS vector",
            """
            CREATE TABLE IF NOT EXISTS entities (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                description TEXT NULL,
                attributes_json TEXT NULL,
                embedding vector NULL,
                confidence_score DOUBLE PRECISION NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type)",
            "CREATE INDEX IF NOT EXISTS idx_entities_name ON entities(name)",
            """
            CREATE TABLE IF NOT EXISTS relationships (
                id TEXT PRIMARY KEY,
                source_entity_id TEXT NOT NULL REFERENCES entities(id),
                target_entity_id TEXT NOT NULL REFERENCES entities(id),
                relationship_type TEXT NOT NULL,
                strength DOUBLE PRECISION NOT NULL DEFAULT 0.5,
                context TEXT NULL,
                temporal_start TEXT NULL,
                temporal_end TEXT NULL,
                attributes_json TEXT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_relationships_source ON relationships(source_entity_id)",
            "CREATE INDEX IF NOT EXISTS idx_relationships_target ON relationships(target_entity_id)",
        ],
    ),
    (
        "pg_003_articles_and_partners",
        [
            """
            CREATE TABLE IF NOT EXISTS articles (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                word_count INTEGER NOT NULL DEFAULT 0,
                category TEXT NULL,
                status TEXT NOT NULL DEFAULT 'draft',
                hunter_voice_score DOUBLE PRECISION NOT NULL DEFAULT 0,
                quality_score DOUBLE PRECISION NOT NULL DEFAULT 0,
                relevance_score DOUBLE PRECISION NOT NULL DEFAULT 0,
                engagement_potential DOUBLE PRECISION NULL,
                source_url TEXT NULL,
                source_title TEXT NULL,
                image_url TEXT NULL,
                image_alt_text TEXT NULL,
                tags_json TEXT NULL,
                published_at TEXT NULL,
                app_published INTEGER NOT NULL DEFAULT 0,
                app_published_at TEXT NULL,
                social_media_posted INTEGER NOT NULL DEFAULT 0,
                view_count INTEGER NOT NULL DEFAULT 0,
                engagement_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_articles_status ON articles(status)",
            "CREATE INDEX IF NOT EXISTS idx_articles_category ON articles(category)",
            """
            CREATE TABLE IF NOT EXISTS business_partners (
                id TEXT PRIMARY KEY,
                entity_id TEXT NULL REFERENCES entities(id),
                business_name TEXT NOT NULL,
                business_type TEXT NULL,
                contact_name TEXT NULL,
                contact_email TEXT NULL,
                contact_phone TEXT NULL,
                partnership_tier TEXT NOT NULL DEFAULT 'bronze',
                monthly_fee DOUBLE PRECISION NULL,
                credits_purchased INTEGER NOT NULL DEFAULT 0,
                credits_remaining INTEGER NOT NULL DEFAULT 0 CHECK (credits_remaining >= 0),
                contract_start_date TEXT NULL,
                contract_end_date TEXT NULL,
                auto_renewal INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL DEFAULT 'active',
                notes TEXT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_partners_status ON business_partners(status)",
            """
            CREATE TABLE IF NOT EXISTS article_business_mentions (
                id TEXT PRIMARY KEY,
                article_id TEXT NOT NULL REFERENCES articles(id),
                business_partner_id TEXT NOT NULL REFERENCES business_partners(id),
                mention_context TEXT NULL,
                relevance_score DOUBLE PRECISION NOT NULL DEFAULT 0.5,
                mention_type TEXT NOT NULL DEFAULT 'standard',
                verified INTEGER NOT NULL DEFAULT 0,
                credits_charged INTEGER NOT NULL DEFAULT 0,
                metadata_json TEXT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(article_id, business_partner_id)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_mentions_partner ON article_business_mentions(business_partner_id)",
        ],
    ),
    (
        "pg_004_credit_ledger",
        [
            """
            CREATE TABLE IF NOT EXISTS credit_usage_log (
                id TEXT PRIMARY KEY,
                business_partner_id TEXT NOT NULL REFERENCES business_partners(id),
                amount INTEGER NOT NULL,
                description TEXT NULL,
                mention_id TEXT NULL,
                balance_after INTEGER NULL,
                created_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_credit_log_partner ON credit_usage_log(business_partner_id, created_at)",
        ],
    ),
    (
        "pg_005_content_queue",
        [
            """
            CREATE TABLE IF NOT EXISTS content_queue (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                word_count INTEGER NOT NULL DEFAULT 0,
                source_url TEXT NULL,
                source_type TEXT NOT NULL DEFAULT 'rss',
                priority TEXT NOT NULL DEFAULT 'medium',
                relevance_score DOUBLE PRECISION NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'pending',
                scheduled_for TEXT NULL,
                processed_at TEXT NULL,
                metadata_json TEXT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_content_queue_status ON content_queue(status, relevance_score)",
        ],
    ),
]


def apply_migrations_pg(conn) -> None:
    logger = logging.getLogger("huntergraph.migrations")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    conn.commit()
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    for version, statements in _STATEMENTS:
        if version in applied:
            logger.debug("migration_skipped version=%s", version)
            continue
        try:
            for statement in statements:
                conn.execute(statement)
            conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        logger.info("migration_applied version=%s", version)
