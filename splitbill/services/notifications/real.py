"""
Redis Notification Sink

Production implementation: publishes every notification as JSON on the
notification channel, where the terminals' front-ends pick them up.

notify() is called from inside async engine code, so when an event loop
is running the publish is handed to the loop's default executor and
notify() returns at once. flush() waits for those publishes.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from typing import Optional

import redis
from redis.exceptions import RedisError

from splitbill.core.config import get_settings
from splitbill.services.notifications.base import (
    BaseNotificationSink,
    Notification,
    Severity,
)

logger = logging.getLogger(__name__)


class RedisNotificationSink(BaseNotificationSink):
    """Notification sink backed by Redis pub/sub."""

    def __init__(self, redis_url: Optional[str] = None, channel: Optional[str] = None):
        settings = get_settings()
        self.channel = channel or settings.notification_channel
        self.client = redis.Redis.from_url(redis_url or settings.redis_url)
        self._pending: set[asyncio.Future] = set()
        logger.info(f"RedisNotificationSink initialized (channel={self.channel})")

    @property
    def provider_name(self) -> str:
        return "redis"

    def notify(
        self,
        message: str,
        severity: Severity = Severity.INFO,
        session_id: Optional[int] = None,
    ) -> Notification:
        notification = Notification(message=message, severity=Severity(severity), session_id=session_id)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._publish(notification)
        else:
            future = loop.run_in_executor(None, self._publish, notification)
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)
        return notification

    def _publish(self, notification: Notification) -> None:
        try:
            receivers = self.client.publish(self.channel, notification.to_json())
            logger.info(
                f"Notification [{notification.severity.value}] sent to {receivers} terminal(s): "
                f"{notification.message}"
            )
        except RedisError as e:
            logger.error(f"Notification publish failed: {e} ({notification.message})")

    async def flush(self) -> None:
        """Wait until every notification handed to the executor is published."""
        if self._pending:
            await asyncio.gather(*tuple(self._pending))

    def health_check(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
