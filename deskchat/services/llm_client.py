"""
Model runtime client wrapper.

Talks to Ollama through its OpenAI-compatible API: streamed chat
completions for answers, plain completions for memory summaries, and
embeddings for retrieval.
"""

import logging
from collections.abc import Awaitable, Callable

import openai
from openai import AsyncOpenAI

from deskchat.core.config import Settings
from deskchat.core.errors import EmbeddingError, GenerationError
from deskchat.core.telemetry import get_tracer

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Awaitable[None]]


class OllamaService:
    """Wrapper around the Ollama runtime for chat completions and embeddings."""

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._tracer = get_tracer()
        self._client = client or AsyncOpenAI(
            base_url=settings.ollama_base_url,
            api_key=settings.ollama_api_key,
        )

    async def stream_chat(
        self,
        messages: list[dict[str, str]],
        model: str,
        on_token: TokenCallback,
    ) -> str:
        """
        Generate a chat completion, forwarding each token as it arrives.

        Args:
            messages: The conversation messages (system + history + input).
            model: Model name known to the runtime.
            on_token: Awaited once per non-empty token delta.

        Returns:
            The full answer text.
        """
        with self._tracer.start_as_current_span("llm.stream_chat") as span:
            span.set_attribute("llm.model", model)
            span.set_attribute("llm.messages", len(messages))
            parts: list[str] = []
            try:
                stream = await self._client.chat.completions.create(
                    model=model,
                    messages=messages,
                    stream=True,
                )
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    token = chunk.choices[0].delta.content
                    if token:
                        parts.append(token)
                        await on_token(token)
            except openai.OpenAIError as exc:
                raise GenerationError(f"Model {model} failed: {exc}") from exc

            answer = "".join(parts)
            span.set_attribute("llm.answer_length", len(answer))
            logger.info("Streamed %d tokens from %s", len(parts), model)
            return answer

    async def complete(self, messages: list[dict[str, str]], model: str) -> str:
        """Non-streamed completion, used for memory summaries."""
        with self._tracer.start_as_current_span("llm.complete") as span:
            span.set_attribute("llm.model", model)
            try:
                response = await self._client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=0.0,
                )
            except openai.OpenAIError as exc:
                raise GenerationError(f"Model {model} failed: {exc}") from exc
            return response.choices[0].message.content or ""

    async def embed_batch(self, texts: list[str], model: str) -> list[list[float]]:
        """
        Generate embeddings for a batch of texts.

        Returns:
            List of embedding vectors (same order as input).
        """
        with self._tracer.start_as_current_span("llm.embed_batch") as span:
            span.set_attribute("llm.model", model)
            span.set_attribute("llm.batch_size", len(texts))
            try:
                response = await self._client.embeddings.create(input=texts, model=model)
            except openai.OpenAIError as exc:
                raise EmbeddingError(f"Embedding with {model} failed: {exc}") from exc
            return [item.embedding for item in response.data]

    async def embed_text(self, text: str, model: str) -> list[float]:
        vectors = await self.embed_batch([text], model)
        if not vectors:
            raise EmbeddingError(f"Embedding with {model} returned no vector")
        return vectors[0]
