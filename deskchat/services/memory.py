"""
Summary-buffer conversation memory.

The transcript of a conversation is replayed into a buffer of chat
messages. When the buffer exceeds its token budget, the oldest messages
are folded into a running summary written by the model, so the context
sent with each request stays bounded however long the conversation gets.
"""

import logging
from collections.abc import Awaitable, Callable

from deskchat.core.tokens import TokenCounter
from deskchat.models.chat import ASSISTANT_ROLE, USER_ROLE, Conversation

logger = logging.getLogger(__name__)

Summarizer = Callable[[list[dict[str, str]]], Awaitable[str]]

SUMMARY_PROMPT = """\
Progressively summarize the lines of conversation provided, adding onto \
the previous summary and returning a new summary. Keep names, facts, \
decisions and open questions. Answer with the summary only.

Current summary:
{summary}

New lines of conversation:
{new_lines}

New summary:"""


class ContextMemory:
    """Running summary plus the verbatim tail of recent messages."""

    def __init__(
        self,
        max_tokens: int = 2000,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self.max_tokens = max_tokens
        self.summary = ""
        self.messages: list[dict[str, str]] = []
        self._counter = token_counter or TokenCounter()

    @classmethod
    def rehydrate(
        cls,
        conversation: Conversation,
        max_tokens: int = 2000,
        token_counter: TokenCounter | None = None,
    ) -> "ContextMemory":
        """Replay every turn of a conversation in chronological order."""
        memory = cls(max_tokens=max_tokens, token_counter=token_counter)
        for turn in conversation.content:
            if turn.role == USER_ROLE:
                memory.add_user_message(turn.text)
            elif turn.role == ASSISTANT_ROLE:
                memory.add_ai_message(turn.text)
        return memory

    def add_user_message(self, text: str) -> None:
        self.messages.append({"role": USER_ROLE, "content": text})

    def add_ai_message(self, text: str) -> None:
        self.messages.append({"role": ASSISTANT_ROLE, "content": text})

    def buffer_tokens(self) -> int:
        return self._counter.count_messages_tokens(self.messages)

    async def prune(self, summarize: Summarizer) -> None:
        """
        Fold the oldest messages into the summary until the buffer fits.

        The most recent message is never pruned, even if it alone exceeds
        the budget. Pruned messages are folded in batches that each fit the
        budget, one summary call per batch.
        """
        total = self.buffer_tokens()
        if total <= self.max_tokens:
            return

        batch: list[dict[str, str]] = []
        batch_tokens = 0
        pruned = 0
        while len(self.messages) > 1 and total > self.max_tokens:
            cost = self._counter.count_message_tokens(self.messages[0])
            if batch and batch_tokens + cost > self.max_tokens:
                await self._fold(batch, summarize)
                batch, batch_tokens = [], 0
            batch.append(self.messages.pop(0))
            batch_tokens += cost
            total -= cost
            pruned += 1

        if batch:
            await self._fold(batch, summarize)

        logger.info(
            "Summarized %d messages into %d-token summary, %d messages kept",
            pruned,
            self._counter.count_tokens(self.summary),
            len(self.messages),
        )

    async def _fold(self, batch: list[dict[str, str]], summarize: Summarizer) -> None:
        new_lines = "\n".join(
            f"{'Human' if m['role'] == USER_ROLE else 'AI'}: {m['content']}"
            for m in batch
        )
        prompt = SUMMARY_PROMPT.format(summary=self.summary or "(none)", new_lines=new_lines)
        self.summary = (await summarize([{"role": "user", "content": prompt}])).strip()

    async def as_prompt_context(self, summarize: Summarizer) -> list[dict[str, str]]:
        """Summary (as a system message, if any) followed by the recent messages."""
        await self.prune(summarize)
        context: list[dict[str, str]] = []
        if self.summary:
            context.append(
                {
                    "role": "system",
                    "content": f"Summary of the earlier conversation:\n{self.summary}",
                }
            )
        context.extend(dict(m) for m in self.messages)
        return context
