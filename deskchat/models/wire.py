"""
Pydantic models for the WebSocket command/event contract.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Command(BaseModel):
    """Base for inbound commands; every command carries a ``type``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str


class CreateConversationCommand(Command):
    chat_id: str = Field(..., alias="chatId")
    initial_message: str = Field(..., alias="initialMessage")


class ConversationCommand(Command):
    """Commands addressing one conversation (load/read)."""

    chat_id: str = Field(..., alias="chatId")


class SendMessageCommand(Command):
    chat_id: str = Field(..., alias="chatId")
    message: str
    tools: list[str] = Field(default_factory=list)


def event(event_type: str, data: Any) -> dict[str, Any]:
    return {"type": event_type, "data": data}


def stream_event(token: str) -> dict[str, Any]:
    return {"type": "stream", "content": token}


def stream_end_event() -> dict[str, Any]:
    return {"type": "stream_end", "content": "eof"}


def error_event(message: str) -> dict[str, Any]:
    return {"type": "error", "message": message}
