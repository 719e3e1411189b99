"""
Redis Change Bus

Publishes change signals on a Redis pub/sub channel so every terminal
(every API process) recomputes open session views when another one
writes to the ledger.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import inspect
import logging
import uuid
from typing import Callable, Optional

import redis.asyncio as aioredis

from splitbill.core.config import get_settings
from splitbill.services.changebus.base import BaseChangeBus, ChangeEvent, ChangeHandler

logger = logging.getLogger(__name__)


class RedisChangeBus(BaseChangeBus):
    """
    Change bus backed by Redis pub/sub.

    The listener task is started lazily on the first subscription.
    """

    def __init__(self, redis_url: Optional[str] = None, channel: Optional[str] = None):
        settings = get_settings()
        self.channel = channel or settings.change_channel
        self.origin = uuid.uuid4().hex[:12]
        self._client = aioredis.from_url(redis_url or settings.redis_url)
        self._handlers: list[ChangeHandler] = []
        self._listener: Optional[asyncio.Task] = None

        logger.info(f"RedisChangeBus initialized (channel={self.channel}, origin={self.origin})")

    @property
    def provider_name(self) -> str:
        return "redis"

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        self._handlers.append(handler)
        if self._listener is None:
            self._listener = asyncio.get_running_loop().create_task(self._listen())

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: ChangeEvent) -> None:
        if event.origin is None:
            event = ChangeEvent(entity=event.entity, session_id=event.session_id, origin=self.origin)
        await self._client.publish(self.channel, event.to_json())
        logger.debug(f"Change published: {event}")

    async def _listen(self) -> None:
        pubsub = self._client.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = ChangeEvent.from_json(message["data"])
                except (ValueError, KeyError):
                    logger.warning(f"Ignoring malformed change message: {message['data']!r}")
                    continue
                await self._dispatch(event)
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def _dispatch(self, event: ChangeEvent) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Change handler failed for {event}")

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self._client.aclose()
