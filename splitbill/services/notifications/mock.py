"""
Mock Notification Sink

Keeps the most recent notifications in memory, the way the terminal's
toast stack shows them, and logs every one.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from collections import deque
from typing import Optional

from splitbill.core.config import get_settings
from splitbill.services.notifications.base import (
    BaseNotificationSink,
    Notification,
    Severity,
)

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    Severity.SUCCESS: logging.INFO,
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class MockNotificationSink(BaseNotificationSink):
    """
    In-memory notification sink for development and tests.

    Attributes:
        visible: The last max_visible notifications, newest last
        history: Every notification emitted
    """

    def __init__(self, max_visible: Optional[int] = None):
        self.max_visible = max_visible or get_settings().max_visible_notifications
        self.visible: deque[Notification] = deque(maxlen=self.max_visible)
        self.history: list[Notification] = []
        logger.info(f"MockNotificationSink initialized (max_visible={self.max_visible})")

    @property
    def provider_name(self) -> str:
        return "mock"

    def notify(
        self,
        message: str,
        severity: Severity = Severity.INFO,
        session_id: Optional[int] = None,
    ) -> Notification:
        notification = Notification(message=message, severity=Severity(severity), session_id=session_id)
        self.visible.append(notification)
        self.history.append(notification)
        logger.log(
            _LOG_LEVELS[notification.severity],
            f"[{notification.severity.value}] {message}",
        )
        return notification

    def messages(self, severity: Optional[Severity] = None) -> list[str]:
        """Messages emitted so far, optionally filtered by severity."""
        return [
            n.message for n in self.history
            if severity is None or n.severity == severity
        ]

    def dismiss(self) -> None:
        self.visible.clear()
