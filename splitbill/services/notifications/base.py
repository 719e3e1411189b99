"""
Notification Sink Abstract Base Class

Defines the interface the settlement engine uses to surface human-readable
outcomes to the operator ("payment added", "nothing selected", ...).
Supports both Mock (development) and Redis (production) implementations.

Author: Khalil Bannouri
Version: 1.0.0
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Severity(str, Enum):
    """Notification severity."""
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class Notification:
    """One operator-facing message."""
    message: str
    severity: Severity = Severity.INFO
    session_id: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        return json.dumps({
            "message": self.message,
            "severity": self.severity.value,
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
        })


class BaseNotificationSink(ABC):
    """Abstract base class for notification sinks."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    def notify(
        self,
        message: str,
        severity: Severity = Severity.INFO,
        session_id: Optional[int] = None,
    ) -> Notification:
        """Deliver a message to the operator."""
        pass

    def success(self, message: str, session_id: Optional[int] = None) -> Notification:
        return self.notify(message, Severity.SUCCESS, session_id)

    def warning(self, message: str, session_id: Optional[int] = None) -> Notification:
        return self.notify(message, Severity.WARNING, session_id)

    def error(self, message: str, session_id: Optional[int] = None) -> Notification:
        return self.notify(message, Severity.ERROR, session_id)

    def info(self, message: str, session_id: Optional[int] = None) -> Notification:
        return self.notify(message, Severity.INFO, session_id)

    async def flush(self) -> None:
        """Wait for notifications still being delivered."""
        return None

    def health_check(self) -> bool:
        """Check sink connectivity."""
        return True
