"""
Retrieval pipeline — grounded answers from a live web search.

Coordinates the full Search → Chunk → Embed → Rank → Generate flow:
1. Normalize the user message into a search-engine query.
2. Fetch the result page(s).
3. Split the page text into overlapping chunks.
4. Embed the chunks and the question.
5. Rank chunks in an ephemeral index and keep the top-k.
6. Fill the tool prompt with the retrieved context and stream the answer.
"""

import logging

from deskchat.core.config import Settings
from deskchat.core.telemetry import get_tracer
from deskchat.models.chat import GroundedAnswer, SourceExcerpt
from deskchat.services.chunking import split_text
from deskchat.services.llm_client import OllamaService, TokenCallback
from deskchat.services.registry import Tool
from deskchat.services.search import WebSearchService
from deskchat.services.vector_index import RetrievedDocument, VectorIndex

logger = logging.getLogger(__name__)

DOCUMENT_TEMPLATE = "Context: {page_content}\nSource: {source}"


class RetrievalPipeline:
    """Answers a question from freshly fetched and ranked web content."""

    def __init__(
        self,
        search_service: WebSearchService,
        llm_service: OllamaService,
        settings: Settings,
    ) -> None:
        self._search = search_service
        self._llm = llm_service
        self._embedding_model = settings.embedding_model
        self._chunk_size = settings.chunk_size
        self._chunk_overlap = settings.chunk_overlap
        self._top_k = settings.retrieval_top_k
        self._excerpt_length = settings.excerpt_length
        self._tracer = get_tracer()

    async def run(
        self,
        question: str,
        tool: Tool,
        model: str,
        on_token: TokenCallback,
        system_prompt: str = "",
        history: list[dict[str, str]] | None = None,
    ) -> GroundedAnswer:
        """
        Answer ``question`` through retrieval.

        Args:
            question: The user's message.
            tool: The tool whose prompt template frames the answer.
            model: Chat model used for the answer.
            on_token: Receives each answer token as it is generated.
            system_prompt: Optional system message placed first.
            history: Earlier conversation messages, oldest first.

        Returns:
            GroundedAnswer with the answer, the cited excerpts and the input.
        """
        with self._tracer.start_as_current_span("rag.run") as span:
            span.set_attribute("rag.tool", tool.name)
            span.set_attribute("rag.query_length", len(question))

            documents = await self.retrieve(question)
            span.set_attribute("rag.retrieval_count", len(documents))

            context = self._format_context(documents)
            messages = self._build_messages(
                tool.render(context, question), system_prompt, history or []
            )
            answer = await self._llm.stream_chat(messages, model, on_token)

            return GroundedAnswer(
                answer=answer,
                context=self._excerpts(documents),
                input=question,
            )

    async def retrieve(self, question: str) -> list[RetrievedDocument]:
        """Fetch, chunk, embed and rank; returns the top-k documents."""
        urls = self._search.search_urls(question)
        pages = await self._search.fetch_all(urls)

        contents: list[str] = []
        sources: list[str] = []
        for page in pages:
            for chunk in split_text(
                page.text,
                chunk_size=self._chunk_size,
                overlap=self._chunk_overlap,
                source=page.source_url,
            ):
                contents.append(chunk.text)
                sources.append(chunk.metadata["source"])
        logger.info("Split %d page(s) into %d chunks", len(pages), len(contents))

        if not contents:
            logger.warning("No text retrieved for query %r", question)
            return []

        embeddings = await self._llm.embed_batch(contents, self._embedding_model)
        index = VectorIndex(contents, sources, embeddings)
        query_vector = await self._llm.embed_text(question, self._embedding_model)
        documents = index.search(query_vector, top_k=self._top_k)

        for i, doc in enumerate(documents, start=1):
            logger.debug("Chunk %d from %s (score %.3f)", i, doc.domain, doc.rank)
        return documents

    @staticmethod
    def _format_context(documents: list[RetrievedDocument]) -> str:
        """Render retrieved chunks into the ``{context}`` block."""
        return "\n\n".join(
            DOCUMENT_TEMPLATE.format(page_content=doc.content, source=doc.source_url)
            for doc in documents
        )

    @staticmethod
    def _build_messages(
        prompt: str,
        system_prompt: str,
        history: list[dict[str, str]],
    ) -> list[dict[str, str]]:
        """Assemble the model message array: system + history + filled prompt."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(history)
        messages.append({"role": "user", "content": prompt})
        return messages

    def _excerpts(self, documents: list[RetrievedDocument]) -> list[SourceExcerpt]:
        return [
            SourceExcerpt(
                content=doc.content[: self._excerpt_length] + "...",
                source=doc.domain,
            )
            for doc in documents
        ]
