import pytest

from huntergraph.errors import InvalidTransitionError, NotFoundError, PrivilegeError, ValidationError
from huntergraph.services.articles_service import (
    create_article,
    get_article,
    list_articles,
    update_article,
)


def test_create_article_derives_word_count(store):
    article = create_article(store.client, {"title": "Town Meeting", "content": "one two  three"})
    assert article.word_count == 3
    assert article.status == "draft"
    assert article.published_at is None
    assert article.tags == []

    explicit = create_article(
        store.client,
        {"title": "Parade Route", "content": "short", "word_count": 900, "tags": "parade, downtown"},
    )
    assert explicit.word_count == 900
    assert explicit.tags == ["parade", "downtown"]


def test_create_article_validates_enumerations(store):
    with pytest.raises(ValidationError):
        create_article(store.client, {"title": "x", "content": "y", "category": "sports"})
    with pytest.raises(ValidationError):
        create_article(store.client, {"title": "x", "content": "y", "status": "live"})
    with pytest.raises(ValidationError):
        create_article(store.client, {"title": "", "content": "y"})


def test_update_article_requires_admin_and_stamps_publication(store):
    article = create_article(store.client, {"title": "Library Expansion", "content": "first draft"})

    with pytest.raises(PrivilegeError):
        update_article(store.client, article.id, {"status": "published"})

    updated = update_article(
        store.admin,
        article.id,
        {"status": "published", "content": "a longer second draft"},
    )
    assert updated.status == "published"
    assert updated.published_at is not None
    assert updated.word_count == 4

    with pytest.raises(NotFoundError):
        update_article(store.admin, "missing", {"title": "Nope"})


def test_article_status_only_moves_forward(store):
    article = create_article(store.client, {"title": "Bridge Closure", "content": "Detour posted."})
    published = update_article(store.admin, article.id, {"status": "published"})
    stamped = published.published_at

    same = update_article(store.admin, article.id, {"status": "published"})
    assert same.published_at == stamped

    with pytest.raises(InvalidTransitionError) as excinfo:
        update_article(store.admin, article.id, {"status": "draft"})
    assert excinfo.value.context["current"] == "published"
    assert excinfo.value.context["requested"] == "draft"

    archived = update_article(store.admin, article.id, {"status": "archived"})
    assert archived.status == "archived"
    for status in ("draft", "published"):
        with pytest.raises(InvalidTransitionError):
            update_article(store.admin, article.id, {"status": status})
    assert update_article(store.admin, article.id, {"title": "Bridge Reopens"}).status == "archived"


def test_list_articles_paginates_and_filters(store):
    for index in range(5):
        create_article(
            store.client,
            {
                "title": f"Story {index}",
                "content": "words " * (index + 1),
                "status": "published" if index % 2 else "draft",
            },
        )

    page = list_articles(store.client, page=2, limit=2, sort_by="word_count", sort_order="asc")
    assert [article.word_count for article in page["data"]] == [3, 4]
    assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}

    published = list_articles(store.client, status="published")
    assert published["pagination"]["total"] == 2

    with pytest.raises(ValidationError):
        list_articles(store.client, sort_by="content")


def test_get_article_returns_none_when_absent(store):
    assert get_article(store.client, "missing") is None
