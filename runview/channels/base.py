"""Push channel contract: where live run events come from."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import ChannelMessage

RawMessageT = TypeVar("RawMessageT")


def flow_topic(flow_id: str) -> str:
    """Topic carrying live execution events for one workflow."""
    return f"runs.{flow_id}"


class BaseChannel(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Delivers engine events for a workflow to its viewers.

    ``RawMessageT`` is whatever the backend needs back in :meth:`ack`.
    Backends raise :class:`~runview.errors.TransportFailure` when the
    connection is lost.
    """

    async def connect(self) -> None:
        """Backends without a connection need not override this."""

    async def disconnect(self) -> None:
        """Release the connection; safe to call more than once."""

    @abc.abstractmethod
    async def publish(self, topic: str, message: ChannelMessage) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, ChannelMessage]]:
        """Iterate ``(raw, message)`` pairs for ``topic``.

        The iterator stops after ``lifespan`` seconds, or runs until the
        consuming task is cancelled when ``lifespan`` is ``None``.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Tell the backend ``raw_message`` has been applied."""
        raise NotImplementedError
