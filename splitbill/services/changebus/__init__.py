"""
Change Bus Factory

Returns the in-process or Redis change bus based on ENV_MODE.

Usage:
    from splitbill.services.changebus import get_change_bus

    bus = get_change_bus()
    unsubscribe = bus.subscribe(on_change)
"""

import logging
from functools import lru_cache

from splitbill.core.config import get_settings
from splitbill.services.changebus.base import BaseChangeBus, ChangeEvent, ChangeHandler
from splitbill.services.changebus.memory import InProcessChangeBus

logger = logging.getLogger(__name__)


@lru_cache()
def get_change_bus() -> BaseChangeBus:
    """Get the configured change bus."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Change Bus: Using InProcessChangeBus (development mode)")
        return InProcessChangeBus()

    from splitbill.services.changebus.redis import RedisChangeBus

    logger.info(f"Change Bus: Using RedisChangeBus ({settings.env_mode.value} mode)")
    return RedisChangeBus()


def reset_change_bus() -> None:
    """Clear the cached bus instance."""
    get_change_bus.cache_clear()


__all__ = [
    "get_change_bus",
    "reset_change_bus",
    "BaseChangeBus",
    "ChangeEvent",
    "ChangeHandler",
    "InProcessChangeBus",
]
