"""
Error taxonomy for the conversation and generation engine.

Every error carries a human-readable message; the WebSocket dispatcher
turns any of them into a single ``{"type": "error"}`` event.
"""


class DeskChatError(Exception):
    """Base class for all engine errors."""


class EngineBusyError(DeskChatError):
    """A generation is already in flight; the caller must retry later."""

    def __init__(self, message: str = "The assistant is busy. Wait for the current answer to finish.") -> None:
        super().__init__(message)


class ConversationNotFound(DeskChatError):
    """The referenced conversation has no record on disk."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Conversation not found: {chat_id}")
        self.chat_id = chat_id


class ConversationExists(DeskChatError):
    """A record already exists for the conversation id."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Conversation already exists: {chat_id}")
        self.chat_id = chat_id


class InvalidConversationId(DeskChatError):
    """The conversation id cannot be used as a record name."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Invalid conversation id: {chat_id!r}")
        self.chat_id = chat_id


class PersistenceError(DeskChatError):
    """Reading or writing a record on disk failed."""


class RetrievalError(DeskChatError):
    """Base class for retrieval pipeline failures."""


class RetrievalFetchError(RetrievalError):
    """The search page could not be fetched."""


class EmbeddingError(RetrievalError):
    """The embedding model failed or returned unusable vectors."""


class RetrievalIndexError(RetrievalError):
    """The similarity index could not be built or queried."""


class GenerationError(DeskChatError):
    """The language model call failed."""


class GenerationTimeoutError(GenerationError):
    """The language model did not finish within the configured timeout."""


class UnknownCommand(DeskChatError):
    """The wire command type is not recognized."""

    def __init__(self, command_type: str | None = None) -> None:
        super().__init__("Unknown message type")
        self.command_type = command_type
