"""
Moderation work queue.

A unit of work carries only the comment id (plus delivery bookkeeping);
workers always re-read the comment.  Delivery is at-least-once:

- ``dequeue`` hands a job to exactly one consumer and parks it in a
  processing list until ``ack``.
- ``retry`` re-schedules a failed job after the next delay of the
  backoff schedule, or dead-letters it once the schedule is exhausted.
- ``recover`` re-queues jobs left unacknowledged by a crashed consumer.
  Duplicates are harmless because moderation is idempotent.

Two implementations share this interface: ``RedisModerationQueue`` for
deployments with separate worker processes and ``InMemoryModerationQueue``
for tests and single-process development.
"""
import asyncio
import json
import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field, replace

import redis.asyncio as redis

from article_comments.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModerationJob:
    comment_id: str
    attempts: int = 0
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def next_attempt(self) -> "ModerationJob":
        return replace(self, attempts=self.attempts + 1)

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "ModerationJob":
        return cls(**json.loads(raw))


def next_delay(job: ModerationJob, delays: Sequence[float]) -> float | None:
    """Delay before the next attempt of *job*, or None when retries are exhausted."""
    if job.attempts < len(delays):
        return delays[job.attempts]
    return None


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

class RedisModerationQueue:
    QUEUE_KEY = "moderation:queue"
    PROCESSING_KEY = "moderation:processing"
    DELAYED_KEY = "moderation:delayed"
    DEAD_KEY = "moderation:dead"

    def __init__(self, url: str) -> None:
        self.url = url
        self._redis: redis.Redis | None = None

    async def connect(self) -> None:
        # No socket_timeout: BLMOVE blocks up to the poll interval.
        self._redis = redis.from_url(self.url, decode_responses=True, socket_connect_timeout=2)
        await self._redis.ping()
        logger.info("Redis moderation queue connected: %s", self.url)

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def enqueue(self, comment_id: str) -> ModerationJob:
        job = ModerationJob(comment_id=comment_id)
        await self._redis.lpush(self.QUEUE_KEY, job.to_json())
        return job

    async def _promote_due(self) -> None:
        due = await self._redis.zrangebyscore(self.DELAYED_KEY, 0, time.time())
        for raw in due:
            # ZREM succeeds for exactly one consumer per job.
            if await self._redis.zrem(self.DELAYED_KEY, raw):
                await self._redis.lpush(self.QUEUE_KEY, raw)

    async def dequeue(self, timeout: float) -> ModerationJob | None:
        await self._promote_due()
        raw = await self._redis.blmove(
            self.QUEUE_KEY, self.PROCESSING_KEY, timeout, "RIGHT", "LEFT"
        )
        if raw is None:
            return None
        return ModerationJob.from_json(raw)

    async def ack(self, job: ModerationJob) -> None:
        await self._redis.lrem(self.PROCESSING_KEY, 1, job.to_json())

    async def retry(self, job: ModerationJob, delays: Sequence[float]) -> float | None:
        delay = next_delay(job, delays)
        if delay is None:
            await self.dead_letter(job)
            return None
        await self._redis.zadd(self.DELAYED_KEY, {job.next_attempt().to_json(): time.time() + delay})
        return delay

    async def dead_letter(self, job: ModerationJob) -> None:
        await self._redis.lpush(self.DEAD_KEY, job.to_json())

    async def recover(self) -> int:
        moved = 0
        while await self._redis.lmove(self.PROCESSING_KEY, self.QUEUE_KEY, "RIGHT", "LEFT"):
            moved += 1
        if moved:
            logger.warning("Re-queued %d unacknowledged moderation job(s)", moved)
        return moved

    async def stats(self) -> dict:
        return {
            "queued": await self._redis.llen(self.QUEUE_KEY),
            "processing": await self._redis.llen(self.PROCESSING_KEY),
            "delayed": await self._redis.zcard(self.DELAYED_KEY),
            "dead_lettered": await self._redis.llen(self.DEAD_KEY),
        }


# ---------------------------------------------------------------------------
# In-process
# ---------------------------------------------------------------------------

class InMemoryModerationQueue:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[ModerationJob] = asyncio.Queue()
        self._processing: dict[str, ModerationJob] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self.dead_letters: list[ModerationJob] = []

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    async def enqueue(self, comment_id: str) -> ModerationJob:
        job = ModerationJob(comment_id=comment_id)
        self._queue.put_nowait(job)
        return job

    async def dequeue(self, timeout: float) -> ModerationJob | None:
        try:
            job = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        self._processing[job.job_id] = job
        return job

    async def ack(self, job: ModerationJob) -> None:
        self._processing.pop(job.job_id, None)

    def _release(self, job: ModerationJob) -> None:
        self._timers.pop(job.job_id, None)
        self._queue.put_nowait(job)

    async def retry(self, job: ModerationJob, delays: Sequence[float]) -> float | None:
        delay = next_delay(job, delays)
        if delay is None:
            await self.dead_letter(job)
            return None
        nxt = job.next_attempt()
        loop = asyncio.get_running_loop()
        self._timers[nxt.job_id] = loop.call_later(delay, self._release, nxt)
        return delay

    async def dead_letter(self, job: ModerationJob) -> None:
        self.dead_letters.append(job)

    async def recover(self) -> int:
        stranded = list(self._processing.values())
        self._processing.clear()
        for job in stranded:
            self._queue.put_nowait(job)
        return len(stranded)

    async def stats(self) -> dict:
        return {
            "queued": self._queue.qsize(),
            "processing": len(self._processing),
            "delayed": len(self._timers),
            "dead_lettered": len(self.dead_letters),
        }


ModerationQueue = RedisModerationQueue | InMemoryModerationQueue


def build_queue(config: Settings) -> ModerationQueue:
    if config.QUEUE_BACKEND == "memory":
        return InMemoryModerationQueue()
    return RedisModerationQueue(config.REDIS_URL)
