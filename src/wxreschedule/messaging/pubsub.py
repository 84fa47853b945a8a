"""Fire-and-forget notification events over Redis pub/sub."""

from __future__ import annotations

import logging

import redis

from wxreschedule.models import RescheduleNotification

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "reschedule.suggestions"
USER_CHANNEL_PREFIX = "notifications:user:"


class NotificationPublisher:
    """Publishes reschedule events to a topic channel and per-user channels."""

    def __init__(self, client: redis.Redis, channel: str = DEFAULT_CHANNEL):
        self.client = client
        self.channel = channel

    def publish(self, notification: RescheduleNotification) -> int:
        """Publish one event. Returns the total number of subscribers reached.

        Raises ``redis.RedisError`` on failure; callers decide whether that
        matters.
        """
        payload = notification.model_dump_json()
        receivers = self.client.publish(self.channel, payload)
        for user_id in (notification.student_id, notification.instructor_id):
            receivers += self.client.publish(f"{USER_CHANNEL_PREFIX}{user_id}", payload)
        logger.info(
            "Published %s for booking %s to %d subscriber(s)",
            notification.event_type, notification.booking_id, receivers,
        )
        return receivers
