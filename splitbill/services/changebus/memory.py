"""
In-Process Change Bus

Observer-pattern change bus for a single process (development and tests).
Handlers run in subscription order; a failing handler is logged and does
not stop the others.
"""

import inspect
import logging
from typing import Callable

from splitbill.services.changebus.base import BaseChangeBus, ChangeEvent, ChangeHandler

logger = logging.getLogger(__name__)


class InProcessChangeBus(BaseChangeBus):
    """Delivers events synchronously to local subscribers."""

    def __init__(self):
        self._handlers: list[ChangeHandler] = []
        self.published: list[ChangeEvent] = []

    @property
    def provider_name(self) -> str:
        return "memory"

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: ChangeEvent) -> None:
        self.published.append(event)
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Change handler failed for {event}")
