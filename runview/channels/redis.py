"""Redis pub/sub channel for cross-process live events."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from pydantic import ValidationError

from ..contracts import ChannelMessage
from ..errors import TransportFailure
from .base import BaseChannel

logger = logging.getLogger(__name__)


class RedisChannel(BaseChannel[str]):
    """Fan-out over Redis pub/sub: every open viewer of a flow sees every event.

    Messages published while nobody is subscribed are lost, which matches the
    push semantics of the engine; history catches up on the next refresh.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "runview",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisChannel")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._client: Optional[Any] = None

    def _channel_name(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    async def connect(self) -> None:
        """Open the client once and check the server answers."""
        if self._client is not None:
            return
        client = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        try:
            await client.ping()
        except redis.RedisError as exc:
            await client.aclose()
            raise TransportFailure("connect", str(exc), cause=exc) from exc
        self._client = client

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def publish(self, topic: str, message: ChannelMessage) -> None:
        await self.connect()
        try:
            await self._client.publish(self._channel_name(topic), message.to_json())
        except redis.RedisError as exc:
            raise TransportFailure("publish", str(exc), cause=exc) from exc

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, ChannelMessage]]:
        """Yield events published on ``topic`` until cancelled or ``lifespan`` ends.

        A dropped connection ends the subscription with :class:`TransportFailure`.
        """
        await self.connect()
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None
        try:
            await pubsub.subscribe(self._channel_name(topic))
            while deadline is None or loop.time() < deadline:
                raw = await pubsub.get_message(timeout=1.0)
                if raw is None:
                    continue
                data = raw["data"]
                try:
                    message = ChannelMessage.from_json(data)
                except ValidationError as exc:
                    logger.warning(f"Dropping unparseable event on {topic}: {exc}")
                    continue
                yield data, message
        except redis.RedisError as exc:
            raise TransportFailure("subscribe", str(exc), cause=exc) from exc
        finally:
            try:
                await pubsub.unsubscribe()
            except redis.RedisError as exc:
                logger.debug(f"Unsubscribe from {topic} failed: {exc}")
            await pubsub.aclose()

    async def ack(self, raw_message: str) -> None:
        """Pub/sub keeps no delivery state, so there is nothing to release."""
