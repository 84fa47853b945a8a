"""Durable work queue on Redis: at-least-once delivery with leases and a dead-letter list.

Layout for a queue named ``q``:

- ``q:pending``     list of message IDs waiting to be received
- ``q:processing``  list of message IDs currently leased to a worker
- ``q:dead``        list of message IDs that exhausted their receives
- ``q:messages``    hash ID -> JSON body
- ``q:receives``    hash ID -> receive count
- ``q:leases``      hash ID -> lease deadline (unix seconds)

``receive`` moves an ID from pending to processing atomically (LMOVE), so
two workers never hold the same message. A message that is not acked stays
leased until its lease expires; ``requeue_expired`` then returns it to
pending, or to the dead-letter list once it has been received
``max_receives`` times. The lease length is the redelivery backoff.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable

import redis

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 300
DEFAULT_MAX_RECEIVES = 3


@dataclass
class QueueMessage:
    """A leased message. Pass it back to ``ack`` once handled."""

    id: str
    body: str
    receive_count: int


def create_redis_client(url: str) -> redis.Redis:
    """Redis client returning ``str`` values."""
    return redis.Redis.from_url(url, decode_responses=True)


class WorkQueue:
    """Reliable FIFO queue backed by Redis lists and hashes."""

    def __init__(
        self,
        client: redis.Redis,
        name: str,
        *,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        max_receives: int = DEFAULT_MAX_RECEIVES,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.name = name
        self.lease_seconds = lease_seconds
        self.max_receives = max_receives
        self._clock = clock

        self.pending_key = f"{name}:pending"
        self.processing_key = f"{name}:processing"
        self.dead_key = f"{name}:dead"
        self.messages_key = f"{name}:messages"
        self.receives_key = f"{name}:receives"
        self.leases_key = f"{name}:leases"

    def enqueue(self, body: str) -> str:
        """Add a message. Returns its ID."""
        message_id = uuid.uuid4().hex
        pipe = self.client.pipeline()
        pipe.hset(self.messages_key, message_id, body)
        pipe.lpush(self.pending_key, message_id)
        pipe.execute()
        logger.debug("Enqueued %s on %s", message_id, self.name)
        return message_id

    def receive(self) -> QueueMessage | None:
        """Lease the oldest pending message, or return None when the queue is empty."""
        while True:
            message_id = self.client.lmove(self.pending_key, self.processing_key, "RIGHT", "LEFT")
            if message_id is None:
                return None

            body = self.client.hget(self.messages_key, message_id)
            if body is None:
                # Body already deleted (acked by a worker whose lease had expired)
                logger.warning("Dropping orphaned message ID %s", message_id)
                self.client.lrem(self.processing_key, 1, message_id)
                continue

            pipe = self.client.pipeline()
            pipe.hincrby(self.receives_key, message_id, 1)
            pipe.hset(self.leases_key, message_id, self._clock() + self.lease_seconds)
            receive_count, _ = pipe.execute()
            return QueueMessage(id=message_id, body=body, receive_count=int(receive_count))

    def ack(self, message: QueueMessage) -> None:
        """Delete a successfully processed message."""
        pipe = self.client.pipeline()
        pipe.lrem(self.processing_key, 1, message.id)
        pipe.hdel(self.messages_key, message.id)
        pipe.hdel(self.receives_key, message.id)
        pipe.hdel(self.leases_key, message.id)
        pipe.execute()

    def dead_letter(self, message: QueueMessage) -> None:
        """Move a message that can never succeed straight to the dead-letter list."""
        pipe = self.client.pipeline()
        self._queue_release(pipe, message.id, dead=True)
        pipe.execute()
        self._log_dead(message.id, message.receive_count)

    def _queue_release(self, pipe, message_id: str, dead: bool) -> None:
        pipe.lrem(self.processing_key, 1, message_id)
        pipe.hdel(self.leases_key, message_id)
        pipe.lpush(self.dead_key if dead else self.pending_key, message_id)

    def _log_dead(self, message_id: str, receive_count: int) -> None:
        logger.error(
            "Message %s on %s dead-lettered after %d receive(s)",
            message_id, self.name, receive_count,
        )

    def _release_if_expired(self, message_id: str, now: float) -> bool:
        """Release one lease if it is still the expired lease seen in Redis.

        The lease table is watched, so a concurrent requeue, receive or ack
        aborts the release instead of pushing a live message back to pending.
        """
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(self.leases_key)
                deadline = pipe.hget(self.leases_key, message_id)
                if deadline is None or float(deadline) > now:
                    return False
                receives = int(pipe.hget(self.receives_key, message_id) or 0)
                dead = receives >= self.max_receives
                pipe.multi()
                self._queue_release(pipe, message_id, dead)
                pipe.execute()
            except redis.WatchError:
                logger.debug("Lease on %s changed during requeue, skipping", message_id)
                return False
        if dead:
            self._log_dead(message_id, receives)
        return True

    def requeue_expired(self) -> int:
        """Return messages whose lease has lapsed to pending (or dead-letter them).

        Returns the number of messages released.
        """
        now = self._clock()
        released = 0
        for message_id, deadline in self.client.hgetall(self.leases_key).items():
            if float(deadline) > now:
                continue
            if self._release_if_expired(message_id, now):
                released += 1
        if released:
            logger.info("Requeued %d expired lease(s) on %s", released, self.name)
        return released

    def depth(self) -> int:
        return self.client.llen(self.pending_key)

    def in_flight(self) -> int:
        return self.client.llen(self.processing_key)

    def dead_letter_depth(self) -> int:
        return self.client.llen(self.dead_key)

    def dead_letters(self) -> list[str]:
        """Bodies of dead-lettered messages, oldest first."""
        ids = self.client.lrange(self.dead_key, 0, -1)
        bodies = self.client.hmget(self.messages_key, ids) if ids else []
        return [b for b in reversed(bodies) if b is not None]
