import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from article_comments.cache import cache
from article_comments.config import settings
from article_comments.database import async_session
from article_comments.logging_config import configure_logging
from article_comments.middleware import TimingMiddleware
from article_comments.routers import articles, comments, metrics
from article_comments.work_queue import build_queue
from article_comments.worker import ModerationWorker, WorkerPool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging(settings.LOG_LEVEL)
    await cache.connect()
    queue = build_queue(settings)
    app.state.queue = queue
    try:
        await queue.connect()
        if settings.RUN_WORKERS_IN_APP:
            await queue.recover()
    except Exception as exc:
        # Serve reads anyway; new comments stay pending until the queue returns.
        logger.warning("Moderation queue unavailable at startup: %s", exc)

    pool = None
    if settings.RUN_WORKERS_IN_APP:
        pool = WorkerPool(ModerationWorker(async_session, queue), settings.WORKER_CONCURRENCY)
        pool.start()
    yield
    # Shutdown: let in-flight moderation finish before closing connections.
    if pool is not None:
        await pool.stop()
    await queue.disconnect()
    await cache.disconnect()


app = FastAPI(
    title="Article Comments API",
    description="Article comments with asynchronous keyword moderation",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(articles.router)
app.include_router(comments.router)
app.include_router(metrics.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
