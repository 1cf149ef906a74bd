"""
File-backed conversation store.

One JSON record per conversation under the conversations directory.
Every write replaces the whole record atomically: the new content goes to
a temporary file in the same directory which is then renamed over the
old record.
"""

import logging
import os
import re
import tempfile
from datetime import datetime, time, timedelta
from pathlib import Path

from pydantic import ValidationError

from deskchat.core.errors import (
    ConversationExists,
    ConversationNotFound,
    InvalidConversationId,
    PersistenceError,
)
from deskchat.models.chat import Conversation, Turn, utcnow

logger = logging.getLogger(__name__)

_CHAT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

RECENCY_BUCKETS = (
    "Aujourd'hui",
    "Hier",
    "Les 7 derniers jours",
    "Les 30 derniers jours",
    "Plus anciens",
)


class ConversationStore:
    """Create, read, list and append to conversation records on disk."""

    def __init__(
        self,
        directory: Path,
        default_model: str,
        idempotent_create: bool = False,
    ) -> None:
        self._directory = Path(directory)
        self._default_model = default_model
        self._idempotent_create = idempotent_create
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, chat_id: str) -> Path:
        if not _CHAT_ID_PATTERN.match(chat_id or ""):
            raise InvalidConversationId(chat_id)
        return self._directory / f"{chat_id}.json"

    def exists(self, chat_id: str) -> bool:
        return self.path_for(chat_id).is_file()

    def create(self, chat_id: str, initial_message: str) -> Conversation:
        """
        Write a new, empty conversation titled after the initial message.

        Raises:
            ConversationExists: if a record exists and creation is not
                                configured to be idempotent.
        """
        if self.exists(chat_id):
            if self._idempotent_create:
                logger.debug("Conversation %s already exists, keeping it", chat_id)
                return self.read(chat_id)
            raise ConversationExists(chat_id)

        conversation = Conversation(
            id=chat_id,
            title=initial_message,
            content=[],
            model_id=self._default_model,
            last_date=utcnow(),
        )
        self._write(conversation)
        logger.info("Created conversation %s (model %s)", chat_id, conversation.model_id)
        return conversation

    def read(self, chat_id: str) -> Conversation:
        path = self.path_for(chat_id)
        if not path.is_file():
            raise ConversationNotFound(chat_id)
        return self._load(path)

    def list(self) -> list[Conversation]:
        """
        Every readable conversation, in no particular order.

        Unreadable records are logged and skipped so one bad file does not
        hide the others.
        """
        try:
            paths = sorted(self._directory.glob("*.json"))
        except OSError as exc:
            raise PersistenceError(f"Cannot list conversations: {exc}") from exc
        conversations = []
        for path in paths:
            try:
                conversations.append(self._load(path))
            except PersistenceError as exc:
                logger.warning("Skipping conversation record: %s", exc)
        return conversations

    def append(self, chat_id: str, turn: Turn) -> Conversation:
        """Append a turn, bump ``lastDate`` and rewrite the record."""
        conversation = self.read(chat_id)
        conversation.content.append(turn)
        conversation.last_date = utcnow()
        self._write(conversation)
        logger.debug(
            "Appended %s turn to %s (%d turns)",
            turn.role,
            chat_id,
            len(conversation.content),
        )
        return conversation

    @staticmethod
    def _load(path: Path) -> Conversation:
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Cannot read {path.name}: {exc}") from exc
        try:
            return Conversation.model_validate_json(raw)
        except ValidationError as exc:
            raise PersistenceError(f"Corrupt conversation record {path.name}: {exc}") from exc

    def _write(self, conversation: Conversation) -> None:
        path = self.path_for(conversation.id)
        payload = conversation.model_dump_json(by_alias=True, indent=4)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._directory,
                prefix=f".{conversation.id}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Cannot write {path.name}: {exc}") from exc


def group_by_recency(
    conversations: list[Conversation],
    now: datetime | None = None,
) -> list[dict]:
    """
    Bucket conversations by ``lastDate`` against local-midnight boundaries.

    Returns one entry per bucket, in display order, each with its
    conversations sorted most recent first. Empty buckets are kept.
    """
    today = (now or datetime.now()).astimezone().date()
    # Local midnight of each day, with that day's own UTC offset.
    boundaries = tuple(
        datetime.combine(today - timedelta(days=days), time.min).astimezone()
        for days in (0, 1, 7, 30)
    )

    buckets: dict[str, list[Conversation]] = {label: [] for label in RECENCY_BUCKETS}
    for conversation in conversations:
        last_date = conversation.last_date.astimezone()
        for label, boundary in zip(RECENCY_BUCKETS, boundaries):
            if last_date >= boundary:
                buckets[label].append(conversation)
                break
        else:
            buckets[RECENCY_BUCKETS[-1]].append(conversation)

    return [
        {
            "label": label,
            "conversations": [
                c.to_wire()
                for c in sorted(items, key=lambda c: c.last_date, reverse=True)
            ],
        }
        for label, items in buckets.items()
    ]
