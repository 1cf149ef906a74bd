"""
Pydantic models for persisted conversations.

The on-disk record uses camelCase keys (``modelId``, ``lastDate``) so that
files written by earlier desktop builds keep loading.
"""

from datetime import datetime, timezone
from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
Role = Literal["user", "assistant"]

EXCERPT_LENGTH = 150


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def extract_domain(url: str) -> str:
    """Host name of a URL, used for citations."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    return host or "unknown domain"


class SourceExcerpt(BaseModel):
    """A citation kept with a grounded answer."""

    content: str = Field(..., description="Truncated excerpt of the retrieved chunk")
    source: str = Field(..., description="Domain of the page the chunk came from")

    @model_validator(mode="before")
    @classmethod
    def _from_document(cls, data: Any) -> Any:
        """Older records stored whole documents (``pageContent``/``metadata``)."""
        if isinstance(data, dict) and "pageContent" in data:
            metadata = data.get("metadata") or {}
            return {
                "content": str(data["pageContent"])[:EXCERPT_LENGTH] + "...",
                "source": extract_domain(str(metadata.get("source") or "")),
            }
        return data


class GroundedAnswer(BaseModel):
    """An assistant answer produced through the retrieval pipeline."""

    answer: str = Field(..., description="The synthesized answer")
    context: list[SourceExcerpt] = Field(
        default_factory=list, description="Excerpts the answer was grounded on"
    )
    input: str = Field(..., description="The question that was asked")


class Turn(BaseModel):
    """One message of a conversation."""

    role: Role
    content: str | GroundedAnswer
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def is_grounded(self) -> bool:
        return isinstance(self.content, GroundedAnswer)

    @property
    def text(self) -> str:
        """Plain text of the turn; grounded turns contribute their answer."""
        if isinstance(self.content, GroundedAnswer):
            return self.content.answer
        return self.content


class Conversation(BaseModel):
    """A persisted chat thread."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    content: list[Turn] = Field(default_factory=list)
    model_id: str = Field(
        alias="modelId",
        validation_alias=AliasChoices("modelId", "model_id", "llm"),
    )
    last_date: datetime = Field(
        default_factory=utcnow,
        alias="lastDate",
        validation_alias=AliasChoices("lastDate", "last_date"),
    )

    def to_wire(self) -> dict:
        """JSON-compatible dict with the on-disk key names."""
        return self.model_dump(mode="json", by_alias=True)
