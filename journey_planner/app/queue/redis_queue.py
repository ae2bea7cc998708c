"""Redis-backed job queue using the reliable-queue (LMOVE) pattern."""

import logging
import time
import uuid

import redis.asyncio as redis

from journey_planner.app.queue.base import QueueMessage, encode_job_message

logger = logging.getLogger(__name__)

# KEYS: pending, processing, received-at zset. ARGV: receive time
RECEIVE_SCRIPT = """
local body = redis.call('LMOVE', KEYS[1], KEYS[2], 'RIGHT', 'LEFT')
if body then
    redis.call('ZADD', KEYS[3], ARGV[1], body)
end
return body
"""

# KEYS: processing, received-at zset. ARGV: stamp time
STAMP_UNTRACKED_SCRIPT = """
local stamped = 0
for _, body in ipairs(redis.call('LRANGE', KEYS[1], 0, -1)) do
    if not redis.call('ZSCORE', KEYS[2], body) then
        redis.call('ZADD', KEYS[2], ARGV[1], body)
        stamped = stamped + 1
    end
end
return stamped
"""

# KEYS: processing, received-at zset, pending. ARGV: body
REQUEUE_SCRIPT = """
local removed = redis.call('LREM', KEYS[1], 1, ARGV[1])
redis.call('ZREM', KEYS[2], ARGV[1])
if removed > 0 then
    redis.call('LPUSH', KEYS[3], ARGV[1])
end
return removed
"""


class RedisJobQueue:
    """Redis implementation of JobQueue.

    Producers LPUSH onto the pending list; every body carries a unique
    message id so it can serve as its own receipt. A consumer atomically
    LMOVEs the oldest message onto the processing list and records the
    receive time in a sorted set. Delete removes it from both; release pushes
    it back onto the pending list. Messages held past the visibility timeout
    are redelivered by requeue_stale(), which also picks up processing
    entries that never got a receive time.
    """

    def __init__(
        self,
        client: redis.Redis,
        queue_name: str,
        processing_queue_name: str,
        visibility_timeout_seconds: int = 600,
    ) -> None:
        """Initialize queue.

        Args:
            client: Async Redis client created with decode_responses=True
            queue_name: Pending list key
            processing_queue_name: In-flight list key
            visibility_timeout_seconds: Age after which in-flight messages are redelivered
        """
        self._redis = client
        self._pending = queue_name
        self._processing = processing_queue_name
        self._received_at = f"{processing_queue_name}:received"
        self._visibility_timeout = visibility_timeout_seconds
        self._receive = client.register_script(RECEIVE_SCRIPT)
        self._stamp_untracked = client.register_script(STAMP_UNTRACKED_SCRIPT)
        self._requeue = client.register_script(REQUEUE_SCRIPT)

    async def enqueue(self, job_id: uuid.UUID) -> None:
        body = encode_job_message(job_id, message_id=uuid.uuid4().hex)
        await self._redis.lpush(self._pending, body)

    async def receive(self) -> QueueMessage | None:
        body = await self._receive(
            keys=[self._pending, self._processing, self._received_at],
            args=[time.time()],
        )
        if body is None:
            return None
        return QueueMessage(body=body, receipt=body)

    async def delete(self, message: QueueMessage) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._processing, 1, message.receipt)
            pipe.zrem(self._received_at, message.receipt)
            await pipe.execute()

    async def release(self, message: QueueMessage) -> None:
        await self._requeue(
            keys=[self._processing, self._received_at, self._pending],
            args=[message.receipt],
        )

    async def requeue_stale(self, now: float | None = None) -> int:
        """Move messages in flight longer than the visibility timeout back to pending.

        Processing entries without a receive time are stamped with now, so
        they are redelivered one visibility timeout later.

        Returns:
            Number of messages redelivered
        """
        now = now if now is not None else time.time()

        stamped = await self._stamp_untracked(
            keys=[self._processing, self._received_at], args=[now]
        )
        if stamped:
            logger.warning("Found %d in-flight messages without a receive time", stamped)

        cutoff = now - self._visibility_timeout
        stale = await self._redis.zrangebyscore(self._received_at, "-inf", cutoff)

        requeued = 0
        for body in stale:
            requeued += await self._requeue(
                keys=[self._processing, self._received_at, self._pending],
                args=[body],
            )

        if requeued:
            logger.warning("Requeued %d stale in-flight messages", requeued)
        return requeued

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def aclose(self) -> None:
        await self._redis.aclose()
