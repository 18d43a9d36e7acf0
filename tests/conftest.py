"""
Test infrastructure for the Article Comments API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- StaticPool forces all async tasks to share the same in-memory database
  connection, which is required because SQLite in-memory databases are
  connection-scoped.  Tests therefore commit before handing control to a
  moderation worker.
- The app's get_db and get_queue dependencies are overridden so requests
  use the test session factory and an in-process moderation queue.
- The cache runs on a fresh MemoryCacheBackend per test, so cache hits,
  misses and tag flushes are exercised for real without Redis.
- Settings come from environment variables set below, before the
  application modules are imported.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["RUN_WORKERS_IN_APP"] = "false"
os.environ["WORKER_POLL_INTERVAL"] = "0.05"
os.environ["BANNED_KEYWORDS"] = "spam,badword"

from datetime import datetime, timezone  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from article_comments.auth import create_access_token  # noqa: E402
from article_comments.cache import MemoryCacheBackend, cache  # noqa: E402
from article_comments.database import Base, get_db  # noqa: E402
from article_comments.dependencies import get_queue  # noqa: E402
from article_comments.main import app  # noqa: E402
from article_comments.models import Article, Comment, CommentStatus, User  # noqa: E402
from article_comments.work_queue import InMemoryModerationQueue  # noqa: E402
from article_comments.worker import ModerationWorker  # noqa: E402

# ---------------------------------------------------------------------------
# Test database engine — SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Dependency override — replace production get_db with the test session factory
# ---------------------------------------------------------------------------

async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(autouse=True)
async def memory_cache():
    """Give every test an empty in-memory cache backend."""
    backend = MemoryCacheBackend()
    cache.use(backend)
    yield backend
    cache.use(None)


@pytest_asyncio.fixture
async def moderation_queue():
    queue = InMemoryModerationQueue()
    app.dependency_overrides[get_queue] = lambda: queue
    yield queue
    await queue.disconnect()
    app.dependency_overrides.pop(get_queue, None)


@pytest_asyncio.fixture
async def worker(moderation_queue) -> ModerationWorker:
    return ModerationWorker(async_session_test, moderation_queue, cache)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """
    Yield a live AsyncSession for tests that need to interact with the
    database directly (e.g. seeding data, asserting ORM state).
    """
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    user = User(username="reader", email="reader@example.com")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest_asyncio.fixture
async def article(db_session: AsyncSession, user: User) -> Article:
    article = Article(title="Moderation pipelines", body="Queues and caches", user_id=user.id)
    db_session.add(article)
    await db_session.commit()
    return article


@pytest_asyncio.fixture
async def async_client(moderation_queue) -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Helper fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def make_comment(db_session: AsyncSession):
    """Insert and commit a comment directly, bypassing the submission path."""
    async def _make(
        article_id: int,
        user_id: int,
        content: str = "A perfectly fine comment",
        status: CommentStatus = CommentStatus.PENDING,
        created_at: datetime | None = None,
    ) -> Comment:
        comment = Comment(
            article_id=article_id,
            user_id=user_id,
            content=content,
            status=status,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db_session.add(comment)
        await db_session.commit()
        return comment

    return _make


@pytest_asyncio.fixture
async def status_of(db_session: AsyncSession):
    """Re-read a comment's persisted status, bypassing the identity map."""
    async def _status(comment_id: str) -> CommentStatus:
        db_session.expire_all()
        comment = await db_session.get(Comment, comment_id)
        return comment.status

    return _status
