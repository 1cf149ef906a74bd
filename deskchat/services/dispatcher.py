"""
Command dispatcher for the WebSocket channel.

Parses an inbound JSON command, routes it by ``type`` to the engine, the
store or the registries, and builds the response event. Every failure is
turned into a single ``error`` event so the channel stays usable.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from deskchat.core.errors import DeskChatError, UnknownCommand
from deskchat.models.chat import USER_ROLE, GroundedAnswer
from deskchat.models.wire import (
    ConversationCommand,
    CreateConversationCommand,
    SendMessageCommand,
    error_event,
    event,
)
from deskchat.services.engine import GenerationEngine
from deskchat.services.registry import Catalog, ToolRegistry
from deskchat.services.store import ConversationStore, group_by_recency

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class CommandDispatcher:
    """Maps wire commands to engine, store and registry operations."""

    def __init__(
        self,
        engine: GenerationEngine,
        store: ConversationStore,
        tools: ToolRegistry,
        catalog: Catalog,
    ) -> None:
        self._engine = engine
        self._store = store
        self._tools = tools
        self._catalog = catalog
        self._handlers: dict[str, Handler] = {
            "createConversation": self._create_conversation,
            "loadConversation": self._load_conversation,
            "readConversation": self._read_conversation,
            "listConversations": self._list_conversations,
            "getDataChats": self._get_data_chats,
            "sendMessage": self._send_message,
            "listModels": self._list_models,
            "listTemplates": self._list_templates,
            "listTools": self._list_tools,
            "listPrompts": self._list_prompts,
        }

    async def handle_text(self, raw: str) -> dict[str, Any]:
        """Decode a text frame and dispatch it."""
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Rejected malformed frame: %s", exc)
            return error_event(f"Invalid JSON: {exc.msg}")
        if not isinstance(payload, dict):
            return error_event("Command must be a JSON object")
        return await self.dispatch(payload)

    async def dispatch(self, payload: dict[str, Any]) -> dict[str, Any]:
        command_type = payload.get("type")
        try:
            handler = (
                self._handlers.get(command_type) if isinstance(command_type, str) else None
            )
            if handler is None:
                raise UnknownCommand(command_type)
            return await handler(payload)
        except UnknownCommand as exc:
            logger.warning("Unknown command type %r", command_type)
            return error_event(str(exc))
        except ValidationError as exc:
            logger.warning("Invalid %s command: %s", command_type, exc)
            return error_event(f"Invalid {command_type} command: {exc.errors()[0]['msg']}")
        except DeskChatError as exc:
            logger.error("%s failed: %s", command_type, exc)
            return error_event(str(exc))
        except Exception as exc:
            logger.exception("Unexpected error while handling %s", command_type)
            return error_event(str(exc))

    async def _create_conversation(self, payload: dict[str, Any]) -> dict[str, Any]:
        command = CreateConversationCommand.model_validate(payload)
        await asyncio.to_thread(self._store.create, command.chat_id, command.initial_message)
        return event("conversationCreated", {"chatId": command.chat_id})

    async def _load_conversation(self, payload: dict[str, Any]) -> dict[str, Any]:
        command = ConversationCommand.model_validate(payload)
        await self._engine.load_conversation(command.chat_id)
        return event("conversationLoaded", {"chatId": command.chat_id})

    async def _read_conversation(self, payload: dict[str, Any]) -> dict[str, Any]:
        command = ConversationCommand.model_validate(payload)
        conversation = await asyncio.to_thread(self._store.read, command.chat_id)
        return event("readConversationResponse", conversation.to_wire())

    async def _list_conversations(self, payload: dict[str, Any]) -> dict[str, Any]:
        conversations = await asyncio.to_thread(self._store.list)
        return event("conversations", [c.to_wire() for c in conversations])

    async def _get_data_chats(self, payload: dict[str, Any]) -> dict[str, Any]:
        conversations = await asyncio.to_thread(self._store.list)
        return event("dataChats", group_by_recency(conversations))

    async def _send_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        command = SendMessageCommand.model_validate(payload)
        answer = await self._engine.add_message_to_conversation(
            command.chat_id, USER_ROLE, command.message, command.tools
        )
        if isinstance(answer, GroundedAnswer):
            return event("messageResponse", answer.model_dump(mode="json"))
        return event("messageResponse", answer)

    async def _list_models(self, payload: dict[str, Any]) -> dict[str, Any]:
        return event("models", self._catalog.models)

    async def _list_templates(self, payload: dict[str, Any]) -> dict[str, Any]:
        return event("templates", self._catalog.templates)

    async def _list_tools(self, payload: dict[str, Any]) -> dict[str, Any]:
        return event("tools", [tool.to_wire() for tool in self._tools.list()])

    async def _list_prompts(self, payload: dict[str, Any]) -> dict[str, Any]:
        return event("prompts", self._catalog.prompts)
