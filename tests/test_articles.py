"""
Article endpoint tests — health, diagnostics headers, the cached article
list (search, date range, pagination) and authenticated creation.
"""
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from article_comments import main
from article_comments.models import Article, User
from article_comments.work_queue import InMemoryModerationQueue


# ---------------------------------------------------------------------------
# Infrastructure / health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    """Health endpoint returns 200 with status=healthy."""
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_startup_survives_unreachable_queue(monkeypatch):
    """The API still starts when the moderation queue cannot be reached."""
    class UnreachableQueue(InMemoryModerationQueue):
        async def connect(self) -> None:
            raise ConnectionError("redis down")

    monkeypatch.setattr(main, "build_queue", lambda config: UnreachableQueue())

    async with main.lifespan(main.app):
        assert isinstance(main.app.state.queue, UnreachableQueue)


@pytest.mark.asyncio
async def test_response_time_header(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert float(resp.headers["x-response-time-ms"]) >= 0


# ---------------------------------------------------------------------------
# List / show
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_articles_empty(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/articles")
    assert resp.status_code == 200
    data = resp.json()
    assert data["items"] == []
    assert data["meta"] == {"current_page": 1, "last_page": 1, "per_page": 10, "total": 0}


@pytest.mark.asyncio
async def test_list_articles_search_and_dates(
    async_client: AsyncClient, db_session: AsyncSession, user: User
):
    db_session.add_all([
        Article(
            title="Async Python", body="Event loops", user_id=user.id,
            created_at=datetime(2026, 5, 1, tzinfo=timezone.utc),
        ),
        Article(
            title="Gardening", body="Tomatoes and python-free beds", user_id=user.id,
            created_at=datetime(2026, 6, 1, tzinfo=timezone.utc),
        ),
        Article(
            title="Cooking", body="Pasta", user_id=user.id,
            created_at=datetime(2026, 6, 2, tzinfo=timezone.utc),
        ),
    ])
    await db_session.commit()

    by_search = (await async_client.get("/api/v1/articles", params={"search": "PYTHON"})).json()
    assert [a["title"] for a in by_search["items"]] == ["Gardening", "Async Python"]

    by_date = (
        await async_client.get("/api/v1/articles", params={"from": "2026-06-01", "to": "2026-06-01"})
    ).json()
    assert [a["title"] for a in by_date["items"]] == ["Gardening"]


@pytest.mark.asyncio
async def test_list_articles_pagination(
    async_client: AsyncClient, db_session: AsyncSession, user: User
):
    db_session.add_all([
        Article(title=f"Article {i}", body="Body", user_id=user.id) for i in range(3)
    ])
    await db_session.commit()

    data = (await async_client.get("/api/v1/articles", params={"per_page": 2, "page": 2})).json()
    assert len(data["items"]) == 1
    assert data["meta"] == {"current_page": 2, "last_page": 2, "per_page": 2, "total": 3}


@pytest.mark.asyncio
async def test_get_article(async_client: AsyncClient, article: Article):
    resp = await async_client.get(f"/api/v1/articles/{article.id}")
    assert resp.status_code == 200
    assert resp.json()["title"] == article.title


@pytest.mark.asyncio
async def test_get_article_not_found(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/articles/99999")
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_article_requires_auth(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/articles", json={"title": "T", "body": "B"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_article_invalidates_list(
    async_client: AsyncClient, auth_headers, user: User
):
    # Cache the empty list first.
    assert (await async_client.get("/api/v1/articles")).json()["meta"]["total"] == 0

    resp = await async_client.post(
        "/api/v1/articles", json={"title": "Fresh", "body": "Content"}, headers=auth_headers
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["user_id"] == user.id

    listing = (await async_client.get("/api/v1/articles")).json()
    assert [a["id"] for a in listing["items"]] == [created["id"]]


@pytest.mark.asyncio
async def test_create_article_validation(async_client: AsyncClient, auth_headers):
    resp = await async_client.post(
        "/api/v1/articles", json={"title": "", "body": "B"}, headers=auth_headers
    )
    assert resp.status_code == 422
