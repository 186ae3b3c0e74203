"""Process-local push channel used by tests and the guides."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import ChannelMessage
from .base import BaseChannel

RawEnvelope = Tuple[str, ChannelMessage]


class InMemoryChannel(BaseChannel[RawEnvelope]):
    """Buffers events per topic until a subscriber takes them.

    Unlike pub/sub, events published before anyone subscribes are kept,
    so a test can push right after starting a session.
    """

    def __init__(self, poll_interval: float = 0.01) -> None:
        self._pending: Dict[str, Deque[RawEnvelope]] = defaultdict(deque)
        self._published = asyncio.Condition()
        self._poll_interval = poll_interval
        self.acked = 0

    async def publish(self, topic: str, message: ChannelMessage) -> None:
        async with self._published:
            self._pending[topic].append((message.to_json(), message))
            self._published.notify_all()

    async def _next(self, topic: str) -> Optional[RawEnvelope]:
        async with self._published:
            if not self._pending[topic]:
                try:
                    await asyncio.wait_for(self._published.wait(), self._poll_interval)
                except asyncio.TimeoutError:
                    return None
            return self._pending[topic].popleft() if self._pending[topic] else None

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawEnvelope, ChannelMessage]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None
        while deadline is None or loop.time() < deadline:
            envelope = await self._next(topic)
            if envelope is not None:
                yield envelope, envelope[1]

    async def ack(self, raw_message: RawEnvelope) -> None:
        self.acked += 1
