"""Push channel backends and the factory that picks one."""

from __future__ import annotations

import os
from typing import Optional

from ..config import RunviewConfig, load_config
from .base import BaseChannel, flow_topic
from .inmemory import InMemoryChannel


def get_channel(
    backend: Optional[str] = None, config: Optional[RunviewConfig] = None
) -> BaseChannel:
    """Build the push channel for ``backend``.

    The backend name comes from the argument, then ``RUNVIEW_CHANNEL``, then
    ``channel.backend`` in the loaded config.
    """

    config = config or load_config()
    backend = (backend or os.getenv("RUNVIEW_CHANNEL") or config.channel.backend).lower()

    if backend == "inmemory":
        return InMemoryChannel()
    elif backend == "redis":
        from .redis import RedisChannel

        redis_conf = config.channel.redis
        return RedisChannel(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported channel backend: {backend}")


__all__ = ["BaseChannel", "InMemoryChannel", "flow_topic", "get_channel"]
