"""
Moderation worker — asynchronous pending -> published/rejected transition.

``ModerationWorker.process`` is idempotent: a missing comment or one that
is no longer pending completes without writes, and the status write is a
compare-and-set on ``status = pending`` so concurrent duplicate
deliveries produce exactly one transition.  Only a transition to
``published`` changes what readers see, so only that path flushes the
article's cache tag (after the status write is committed).

``WorkerPool`` runs N consumers against the shared queue.  It runs inside
the API process (``RUN_WORKERS_IN_APP``) or standalone::

    python -m article_comments.worker
"""
import asyncio
import logging
import signal
from collections.abc import Sequence

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from article_comments.cache import CacheManager, article_tag, cache
from article_comments.classifier import Verdict, classify, parse_banned_keywords
from article_comments.config import get_settings, settings
from article_comments.database import async_session
from article_comments.logging_config import configure_logging
from article_comments.models import CommentStatus
from article_comments.services import comment_store
from article_comments.work_queue import ModerationJob, ModerationQueue, build_queue

logger = logging.getLogger(__name__)

# Failures worth another attempt: the database or its connection was
# briefly unavailable.
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    OperationalError,
    InterfaceError,
    ConnectionError,
    TimeoutError,
)


class RetryableModerationError(Exception):
    """Processing failed without mutating state; the job should be redelivered."""


class ModerationWorker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: ModerationQueue,
        cache_manager: CacheManager = cache,
    ) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.cache = cache_manager

    def backoff(self) -> list[int]:
        """Retry delays (seconds) for successive failed attempts."""
        return list(get_settings().MODERATION_BACKOFF)

    async def process(self, comment_id: str) -> CommentStatus | None:
        """
        Moderate one comment.

        Returns the status this call persisted, or None when nothing was
        written (comment missing, already resolved, or another delivery
        won the compare-and-set).
        """
        banned = parse_banned_keywords(get_settings().BANNED_KEYWORDS)

        try:
            async with self.session_factory() as session:
                comment = await comment_store.find_by_id(session, comment_id)
                if comment is None:
                    logger.debug("Comment %s not found, nothing to moderate", comment_id)
                    return None
                if comment.status != CommentStatus.PENDING:
                    logger.debug("Comment %s already %s", comment_id, comment.status.value)
                    return None

                verdict = classify(comment.content, banned)
                new_status = (
                    CommentStatus.REJECTED if verdict is Verdict.REJECT else CommentStatus.PUBLISHED
                )
                changed = await comment_store.compare_and_set_status(
                    session, comment_id, CommentStatus.PENDING, new_status
                )
                await session.commit()
                article_id = comment.article_id
        except TRANSIENT_ERRORS as exc:
            raise RetryableModerationError(f"comment {comment_id}: {exc}") from exc

        if not changed:
            logger.debug("Comment %s resolved concurrently, skipping", comment_id)
            return None

        logger.info("Comment %s on article %s %s", comment_id, article_id, new_status.value)
        if new_status is CommentStatus.PUBLISHED:
            await self.cache.flush_tag(article_tag(article_id))
        return new_status

    async def handle(self, job: ModerationJob) -> None:
        """Process a delivered job and settle it with the queue."""
        try:
            await self.process(job.comment_id)
        except RetryableModerationError as exc:
            delay = await self.queue.retry(job, self.backoff())
            if delay is None:
                logger.error(
                    "Moderation of comment %s dead-lettered after %d attempt(s); "
                    "comment remains pending: %s",
                    job.comment_id, job.attempts + 1, exc,
                )
            else:
                logger.warning(
                    "Moderation of comment %s failed (attempt %d), retrying in %ss: %s",
                    job.comment_id, job.attempts + 1, delay, exc,
                )
        except Exception:
            logger.exception("Moderation of comment %s failed, dead-lettering", job.comment_id)
            await self.queue.dead_letter(job)
        finally:
            await self.queue.ack(job)

    async def run(self, stop: asyncio.Event, poll_interval: float | None = None) -> None:
        """Consume jobs until *stop* is set; an in-flight job always finishes."""
        interval = poll_interval if poll_interval is not None else settings.WORKER_POLL_INTERVAL
        while not stop.is_set():
            try:
                job = await self.queue.dequeue(timeout=interval)
            except Exception as exc:
                logger.warning("Moderation queue unavailable: %s", exc)
                await asyncio.sleep(interval)
                continue
            if job is None:
                continue
            try:
                await self.handle(job)
            except Exception:
                # Settling failed (queue unavailable); redelivery comes from recover().
                logger.exception("Could not settle moderation job %s", job.job_id)


class WorkerPool:
    def __init__(self, worker: ModerationWorker, concurrency: int) -> None:
        self.worker = worker
        self.concurrency = concurrency
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self.worker.run(self._stop), name=f"moderation-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("Started %d moderation worker(s)", self.concurrency)

    async def stop(self) -> None:
        """Stop accepting work and wait for in-flight jobs to finish."""
        self._stop.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Moderation workers stopped")


async def main(signals: Sequence[int] = (signal.SIGINT, signal.SIGTERM)) -> None:
    configure_logging(settings.LOG_LEVEL)
    await cache.connect()
    queue = build_queue(settings)
    await queue.connect()
    await queue.recover()

    pool = WorkerPool(ModerationWorker(async_session, queue), settings.WORKER_CONCURRENCY)
    loop = asyncio.get_running_loop()
    stopping = asyncio.Event()
    for sig in signals:
        loop.add_signal_handler(sig, stopping.set)

    pool.start()
    try:
        await stopping.wait()
    finally:
        await pool.stop()
        await queue.disconnect()
        await cache.disconnect()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
