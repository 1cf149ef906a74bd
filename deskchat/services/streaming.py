"""
Subscriber registry for streamed generation events.

Connections register themselves by id; events go to the active
subscriber only, which is the most recently attached connection still
open. With no subscriber attached, events are dropped.
"""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    async def send_json(self, payload: dict[str, Any]) -> None: ...


class StreamHub:
    """Routes ``stream``/``stream_end`` events to the active subscriber."""

    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}

    def attach(self, connection_id: str, subscriber: Subscriber) -> None:
        # Re-inserting moves the connection to the end: last connected wins.
        self._subscribers.pop(connection_id, None)
        self._subscribers[connection_id] = subscriber
        logger.info("Subscriber %s attached (%d open)", connection_id, len(self._subscribers))

    def detach(self, connection_id: str) -> None:
        if self._subscribers.pop(connection_id, None) is not None:
            logger.info("Subscriber %s detached (%d open)", connection_id, len(self._subscribers))

    @property
    def active(self) -> Subscriber | None:
        if not self._subscribers:
            return None
        return next(reversed(self._subscribers.values()))

    async def publish(self, payload: dict[str, Any]) -> None:
        subscriber = self.active
        if subscriber is None:
            return
        await subscriber.send_json(payload)
