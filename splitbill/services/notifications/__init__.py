"""
Notification Sink Factory

Returns Mock or Redis notification sink based on ENV_MODE.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from splitbill.core.config import get_settings
from splitbill.services.notifications.base import (
    BaseNotificationSink,
    Notification,
    Severity,
)
from splitbill.services.notifications.mock import MockNotificationSink

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_sink() -> BaseNotificationSink:
    """Get the configured notification sink."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Notification Sink: Using MockNotificationSink (development mode)")
        return MockNotificationSink()

    from splitbill.services.notifications.real import RedisNotificationSink

    logger.info(f"Notification Sink: Using RedisNotificationSink ({settings.env_mode.value} mode)")
    return RedisNotificationSink()


def reset_notification_sink() -> None:
    """Clear the cached sink instance."""
    get_notification_sink.cache_clear()


__all__ = [
    "get_notification_sink",
    "reset_notification_sink",
    "BaseNotificationSink",
    "MockNotificationSink",
    "Notification",
    "Severity",
]
