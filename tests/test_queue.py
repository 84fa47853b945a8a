"""Tests for the Redis work queue and notification publisher."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import fakeredis

from wxreschedule.messaging.pubsub import DEFAULT_CHANNEL, NotificationPublisher
from wxreschedule.messaging.queue import WorkQueue
from wxreschedule.models import RescheduleNotification


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_queue(redis_client, clock=None, max_receives=3) -> WorkQueue:
    return WorkQueue(
        redis_client, "q", lease_seconds=60, max_receives=max_receives,
        clock=clock or FakeClock(),
    )


def test_fifo_order(queue):
    queue.enqueue("first")
    queue.enqueue("second")

    assert queue.depth() == 2
    assert queue.receive().body == "first"
    assert queue.receive().body == "second"
    assert queue.receive() is None


def test_receive_leases_message(queue):
    queue.enqueue("payload")
    msg = queue.receive()

    assert msg.receive_count == 1
    assert queue.depth() == 0
    assert queue.in_flight() == 1


def test_ack_removes_everything(queue, redis_client):
    queue.enqueue("payload")
    msg = queue.receive()
    queue.ack(msg)

    assert queue.in_flight() == 0
    assert redis_client.hlen(queue.messages_key) == 0
    assert redis_client.hlen(queue.leases_key) == 0
    assert redis_client.hlen(queue.receives_key) == 0


def test_unacked_message_redelivered_after_lease(redis_client):
    clock = FakeClock()
    q = make_queue(redis_client, clock)
    message_id = q.enqueue("payload")
    first = q.receive()

    # Lease still active
    assert q.requeue_expired() == 0
    assert q.receive() is None

    clock.now += 61
    assert q.requeue_expired() == 1
    second = q.receive()

    assert second.id == first.id == message_id
    assert second.receive_count == 2


def test_dead_letter_after_max_receives(redis_client):
    clock = FakeClock()
    q = make_queue(redis_client, clock, max_receives=2)
    q.enqueue(json.dumps({"booking_id": "b-1"}))

    for _ in range(2):
        assert q.receive() is not None
        clock.now += 61
        q.requeue_expired()

    assert q.receive() is None
    assert q.depth() == 0
    assert q.in_flight() == 0
    assert q.dead_letter_depth() == 1
    assert q.dead_letters() == ['{"booking_id": "b-1"}']


def test_dead_letter_immediately(queue):
    queue.enqueue("not json")
    msg = queue.receive()
    queue.dead_letter(msg)

    assert queue.in_flight() == 0
    assert queue.dead_letter_depth() == 1
    assert queue.dead_letters() == ["not json"]


def test_dead_letters_oldest_first(queue):
    for body in ("a", "b"):
        queue.enqueue(body)
    queue.dead_letter(queue.receive())
    queue.dead_letter(queue.receive())
    assert queue.dead_letters() == ["a", "b"]


def test_orphaned_id_skipped(queue, redis_client):
    orphan = queue.enqueue("gone")
    queue.enqueue("kept")
    redis_client.hdel(queue.messages_key, orphan)

    msg = queue.receive()

    assert msg.body == "kept"
    assert queue.in_flight() == 1


def test_queues_are_isolated_by_name(redis_client):
    a = WorkQueue(redis_client, "a")
    b = WorkQueue(redis_client, "b")
    a.enqueue("x")
    assert b.receive() is None
    assert a.receive().body == "x"


def test_stale_requeue_does_not_release_a_fresh_lease():
    server = fakeredis.FakeServer()
    clock = FakeClock()
    worker_a = make_queue(fakeredis.FakeRedis(server=server, decode_responses=True), clock)
    worker_b = make_queue(fakeredis.FakeRedis(server=server, decode_responses=True), clock)
    worker_a.enqueue("payload")
    first = worker_a.receive()
    clock.now += 61

    # worker_b scanned the lease table before worker_a requeued and re-received
    stale_leases = worker_b.client.hgetall(worker_b.leases_key)
    assert worker_a.requeue_expired() == 1
    second = worker_a.receive()

    with patch.object(worker_b.client, "hgetall", return_value=stale_leases):
        assert worker_b.requeue_expired() == 0

    assert second.id == first.id
    assert second.receive_count == 2
    assert worker_b.receive() is None
    assert worker_b.in_flight() == 1
    assert worker_b.client.hget(worker_b.receives_key, first.id) == "2"


def test_requeue_skips_acked_message_from_stale_scan(redis_client):
    clock = FakeClock()
    q = make_queue(redis_client, clock)
    q.enqueue("payload")
    msg = q.receive()
    clock.now += 61
    stale_leases = redis_client.hgetall(q.leases_key)
    q.ack(msg)

    with patch.object(redis_client, "hgetall", return_value=stale_leases):
        assert q.requeue_expired() == 0

    assert q.depth() == 0
    assert q.in_flight() == 0


# --- Pub/sub ---


def _notification() -> RescheduleNotification:
    return RescheduleNotification(
        booking_id="b-1",
        student_id="student-1",
        instructor_id="instructor-1",
        original_datetime=datetime(2026, 6, 1, 14, 0, tzinfo=timezone.utc),
        suggestions_count=3,
        triggered_at=datetime(2026, 6, 1, 8, 5, tzinfo=timezone.utc),
    )


def test_publish_to_topic_and_user_channels():
    client = MagicMock()
    client.publish.return_value = 1

    receivers = NotificationPublisher(client).publish(_notification())

    assert receivers == 3
    channels = [c.args[0] for c in client.publish.call_args_list]
    assert channels == [
        DEFAULT_CHANNEL,
        "notifications:user:student-1",
        "notifications:user:instructor-1",
    ]
    payload = json.loads(client.publish.call_args_list[0].args[1])
    assert payload["booking_id"] == "b-1"
    assert payload["suggestions_count"] == 3
    assert payload["event_type"] == "RESCHEDULE_SUGGESTIONS"


def test_publish_reaches_subscriber(redis_client):
    pubsub = redis_client.pubsub()
    pubsub.subscribe("notifications:user:student-1")
    pubsub.get_message(timeout=1)  # subscribe confirmation

    NotificationPublisher(redis_client).publish(_notification())

    message = pubsub.get_message(timeout=1)
    assert message["type"] == "message"
    assert json.loads(message["data"])["student_id"] == "student-1"
