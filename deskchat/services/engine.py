"""
Generation engine — one in-flight generation per process.

For each incoming message the engine persists the user turn, rebuilds
the conversation memory, answers either directly or through the
retrieval pipeline while streaming tokens to the active subscriber,
and persists the assistant turn once the answer is complete.
"""

import asyncio
import logging
from collections.abc import Awaitable
from contextlib import contextmanager
from typing import TypeVar

from deskchat.core.config import Settings
from deskchat.core.errors import (
    ConversationExists,
    ConversationNotFound,
    EngineBusyError,
    GenerationTimeoutError,
)
from deskchat.core.telemetry import get_tracer
from deskchat.core.tokens import TokenCounter
from deskchat.models.chat import (
    ASSISTANT_ROLE,
    Conversation,
    GroundedAnswer,
    Turn,
)
from deskchat.models.wire import stream_end_event, stream_event
from deskchat.services.llm_client import OllamaService
from deskchat.services.memory import ContextMemory
from deskchat.services.rag import RetrievalPipeline
from deskchat.services.registry import Tool, ToolRegistry
from deskchat.services.store import ConversationStore
from deskchat.services.streaming import StreamHub

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_PROMPT = """\
Tu es une IA qui doit répondre avec la syntaxe personnalisée suivante.

1. Sections repliables : `/[Closable: title='TITRE']\\` crée un bloc repliable \
avec un titre sans espaces, en MAJUSCULES. Le contenu est écrit ligne par \
ligne et chaque ligne commence par une majuscule.
2. Titres Markdown : `##` pour un titre de niveau 2, `###` pour le niveau 3.
3. Listes : `-` pour les puces, `1.` pour les listes numérotées. Structure \
les éléments pertinents en listes lorsque c'est utile.
4. Formatage : **gras**, *italique*, ~~barré~~, `code`.
5. Citations : `>` en début de ligne.
6. Liens : `[texte](lien)`.
7. Onglets : `/[Tabs: items={{'js', 'ts'}}]\\` suivi uniquement de blocs de \
code portant chacun leur onglet (```javascript tab="js"), sans ligne vide \
entre les blocs. Utilise-les pour un même script en plusieurs langages.
8. Cartes : `/[Card: title='Titre' href='URL']\\` crée une carte cliquable.
9. Séparateurs : `---`.

Respecte toujours scrupuleusement cette syntaxe pour que l'affichage \
fonctionne correctement."""


class BusyLock:
    """Single-slot, non-waiting gate around generation."""

    def __init__(self) -> None:
        self._held = False

    @property
    def busy(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False

    @contextmanager
    def hold(self):
        """Hold the lock for a block; raises EngineBusyError if taken."""
        if not self.try_acquire():
            raise EngineBusyError()
        try:
            yield self
        finally:
            self.release()


class GenerationEngine:
    """Orchestrates conversation persistence, memory and generation."""

    def __init__(
        self,
        store: ConversationStore,
        tools: ToolRegistry,
        llm_service: OllamaService,
        retrieval: RetrievalPipeline,
        hub: StreamHub,
        settings: Settings,
        token_counter: TokenCounter | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self._store = store
        self._tools = tools
        self._llm = llm_service
        self._retrieval = retrieval
        self._hub = hub
        self._settings = settings
        self._token_counter = token_counter or TokenCounter()
        self._system_prompt = system_prompt
        self._lock = BusyLock()
        self._tracer = get_tracer()

    @property
    def busy(self) -> bool:
        return self._lock.busy

    async def load_conversation(self, chat_id: str) -> ContextMemory:
        """Read a conversation and rebuild its memory."""
        conversation = await asyncio.to_thread(self._store.read, chat_id)
        return self._rehydrate(conversation)

    async def add_message_to_conversation(
        self,
        chat_id: str,
        role: str,
        content: str,
        tools: list[str] | None = None,
    ) -> str | GroundedAnswer:
        """
        Persist a message, generate the reply and persist it.

        Tokens are published as ``stream`` events while generating, and a
        single ``stream_end`` event closes every accepted request, whether
        it succeeded or failed.

        Raises:
            EngineBusyError: another generation is in flight.
            ConversationNotFound: unknown chat id and auto-create disabled.
        """
        with self._lock.hold():
            try:
                with self._tracer.start_as_current_span("engine.generate") as span:
                    span.set_attribute("engine.chat_id", chat_id)
                    span.set_attribute("engine.tools", ",".join(tools or []))
                    return await self._generate(chat_id, role, content, tools or [])
            finally:
                await self._hub.publish(stream_end_event())

    async def _generate(
        self, chat_id: str, role: str, content: str, tools: list[str]
    ) -> str | GroundedAnswer:
        if not await asyncio.to_thread(self._store.exists, chat_id):
            if not self._settings.auto_create_conversations:
                raise ConversationNotFound(chat_id)
            try:
                await asyncio.to_thread(self._store.create, chat_id, content)
            except ConversationExists:
                # Created by a concurrent createConversation; append to it.
                logger.debug("Conversation %s created concurrently", chat_id)

        # Committed before generation so a failure never loses the message.
        conversation = await asyncio.to_thread(
            self._store.append, chat_id, Turn(role=role, content=content)
        )
        memory = self._rehydrate(conversation)
        model = conversation.model_id

        tool = self._tools.select(tools)
        if tool is not None:
            logger.info("Answering %s with tool %s", chat_id, tool.name)
            result = await self._with_timeout(
                self._answer_with_tool(memory, content, tool, model)
            )
        else:
            result = await self._with_timeout(self._answer(memory, model))

        await asyncio.to_thread(
            self._store.append, chat_id, Turn(role=ASSISTANT_ROLE, content=result)
        )
        return result

    async def _answer(self, memory: ContextMemory, model: str) -> str:
        context = await memory.as_prompt_context(self._summarizer(model))
        messages = [{"role": "system", "content": self._system_prompt}, *context]
        return await self._llm.stream_chat(messages, model, self._publish_token)

    async def _answer_with_tool(
        self, memory: ContextMemory, question: str, tool: Tool, model: str
    ) -> GroundedAnswer:
        context = await memory.as_prompt_context(self._summarizer(model))
        # The current message is passed to the tool prompt instead.
        history = context[:-1]
        return await self._retrieval.run(
            question,
            tool,
            model,
            self._publish_token,
            system_prompt=self._system_prompt,
            history=history,
        )

    def _rehydrate(self, conversation: Conversation) -> ContextMemory:
        return ContextMemory.rehydrate(
            conversation,
            max_tokens=self._settings.memory_max_tokens,
            token_counter=self._token_counter,
        )

    def _summarizer(self, model: str):
        async def summarize(messages: list[dict[str, str]]) -> str:
            return await self._llm.complete(messages, model)

        return summarize

    async def _publish_token(self, token: str) -> None:
        await self._hub.publish(stream_event(token))

    async def _with_timeout(self, awaitable: Awaitable[T]) -> T:
        timeout = self._settings.generation_timeout
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            raise GenerationTimeoutError(
                f"Generation did not finish within {timeout:g}s"
            ) from exc

