"""
WebSocket router — the client's persistent command channel.

Each connection registers with the stream hub so generation events reach
it. Every inbound frame is handled in its own task: a long ``sendMessage``
does not block the other commands of the connection, and a second
``sendMessage`` is rejected as busy instead of being queued.
"""

import asyncio
import logging
import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from deskchat.services.dispatcher import CommandDispatcher
from deskchat.services.streaming import StreamHub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


class Connection:
    """Serializes sends on one WebSocket and ignores sends after close."""

    def __init__(self, websocket: WebSocket) -> None:
        self.id = uuid.uuid4().hex
        self._websocket = websocket
        self._send_lock = asyncio.Lock()
        self.closed = False

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.closed:
            return
        async with self._send_lock:
            try:
                await self._websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError) as exc:
                self.closed = True
                logger.info("Dropped event for closed connection %s: %s", self.id, exc)


@router.websocket("/")
@router.websocket("/ws")
async def chat_channel(websocket: WebSocket) -> None:
    """
    Accept commands and push responses and generation events.

    Responses are sent when their command completes; ``stream`` and
    ``stream_end`` events for a generation arrive before its
    ``messageResponse``.
    """
    dispatcher: CommandDispatcher = websocket.app.state.dispatcher
    hub: StreamHub = websocket.app.state.stream_hub

    await websocket.accept()
    connection = Connection(websocket)
    hub.attach(connection.id, connection)
    logger.info("Client connected (%s)", connection.id)

    pending: set[asyncio.Task] = set()

    async def handle(raw: str) -> None:
        response = await dispatcher.handle_text(raw)
        await connection.send_json(response)

    try:
        while True:
            raw = await websocket.receive_text()
            task = asyncio.create_task(handle(raw))
            pending.add(task)
            task.add_done_callback(pending.discard)
    except WebSocketDisconnect:
        logger.info("Client disconnected (%s)", connection.id)
    finally:
        connection.closed = True
        hub.detach(connection.id)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
