from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("huntergraph.migrations")
    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN IMMEDIATE")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_settings(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )


def _migration_knowledge_graph(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS entities (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            description TEXT NULL,
            attributes_json TEXT NULL,
            embedding TEXT NULL,
            confidence_score REAL NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_entities_name ON entities(name)")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS relationships (
            id TEXT PRIMARY KEY,
            source_entity_id TEXT NOT NULL REFERENCES entities(id),
            target_entity_id TEXT NOT NULL REFERENCES entities(id),
            relationship_type TEXT NOT NULL,
            strength REAL NOT NULL DEFAULT 0.5,
            context TEXT NULL,
            temporal_start TEXT NULL,
            temporal_end TEXT NULL,
            attributes_json TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_relationships_source ON relationships(source_entity_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_relationships_target ON relationships(target_entity_id)"
    )


def _migration_articles_and_partners(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            word_count INTEGER NOT NULL DEFAULT 0,
            category TEXT NULL,
            status TEXT NOT NULL DEFAULT 'draft',
            hunter_voice_score REAL NOT NULL DEFAULT 0,
            quality_score REAL NOT NULL DEFAULT 0,
            relevance_score REAL NOT NULL DEFAULT 0,
            engagement_potential REAL NULL,
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
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_status ON articles(status)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_category ON articles(category)")
    conn.execute(
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
            monthly_fee REAL NULL,
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
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_partners_status ON business_partners(status)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS article_business_mentions (
            id TEXT PRIMARY KEY,
            article_id TEXT NOT NULL REFERENCES articles(id),
            business_partner_id TEXT NOT NULL REFERENCES business_partners(id),
            mention_context TEXT NULL,
            relevance_score REAL NOT NULL DEFAULT 0.5,
            mention_type TEXT NOT NULL DEFAULT 'standard',
            verified INTEGER NOT NULL DEFAULT 0,
            credits_charged INTEGER NOT NULL DEFAULT 0,
            metadata_json TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(article_id, business_partner_id)
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_mentions_partner ON article_business_mentions(business_partner_id)"
    )


def _migration_credit_ledger(conn: sqlite3.Connection) -> None:
    conn.execute(
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
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_credit_log_partner ON credit_usage_log(business_partner_id, created_at)"
    )


def _migration_content_queue(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS content_queue (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            word_count INTEGER NOT NULL DEFAULT 0,
            source_url TEXT NULL,
            source_type TEXT NOT NULL DEFAULT 'rss',
            priority TEXT NOT NULL DEFAULT 'medium',
            relevance_score REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'pending',
            scheduled_for TEXT NULL,
            processed_at TEXT NULL,
            metadata_json TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_content_queue_status ON content_queue(status, relevance_score)"
    )


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_settings", _migration_settings),
        ("002_knowledge_graph", _migration_knowledge_graph),
        ("003_articles_and_partners", _migration_articles_and_partners),
        ("004_credit_ledger", _migration_credit_ledger),
        ("005_content_queue", _migration_content_queue),
    ]
