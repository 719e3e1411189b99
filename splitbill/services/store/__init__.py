"""
Session Store Factory

Returns the in-memory or SQL session store based on ENV_MODE.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from splitbill.core.config import get_settings
from splitbill.services.store.base import BaseSessionStore
from splitbill.services.store.memory import InMemorySessionStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_session_store() -> BaseSessionStore:
    """Get the configured session store."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Session Store: Using InMemorySessionStore (development mode)")
        return InMemorySessionStore()

    from splitbill.services.store.sql import SqlSessionStore

    logger.info(f"Session Store: Using SqlSessionStore ({settings.env_mode.value} mode)")
    return SqlSessionStore()


def reset_session_store() -> None:
    """Clear the cached store instance."""
    get_session_store.cache_clear()


__all__ = [
    "get_session_store",
    "reset_session_store",
    "BaseSessionStore",
    "InMemorySessionStore",
]
