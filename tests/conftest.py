"""
Shared fixtures and mock services for the deskchat tests.

The mocks stand in for the Ollama runtime and the web fetcher so the
engine can be exercised end to end against a temporary data directory.
"""

import asyncio

import pytest

from deskchat.core.config import Settings
from deskchat.core.tokens import TokenCounter
from deskchat.services.engine import GenerationEngine
from deskchat.services.rag import RetrievalPipeline
from deskchat.services.registry import ToolRegistry
from deskchat.services.search import FetchedPage, normalize_query
from deskchat.services.store import ConversationStore
from deskchat.services.streaming import StreamHub

VOCABULARY = ("python", "paris", "football", "météo")


def keyword_vector(text: str) -> list[float]:
    """Tiny deterministic embedding: keyword counts plus a constant term."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY] + [0.1]


class WordCounter(TokenCounter):
    """Counts whitespace-separated words instead of BPE tokens."""

    def count_tokens(self, text: str) -> int:
        return len(text.split()) if text else 0


class MockLLMService:
    """Mock model runtime."""

    def __init__(self, tokens=("Salut!",), error=None, summary="Résumé.", embed_error=None):
        self.tokens = list(tokens)
        self.error = error
        self.summary = summary
        self.embed_error = embed_error
        self.calls = []
        self.summary_calls = []
        self.embedded = []
        self.started = asyncio.Event()
        self.gate: asyncio.Event | None = None

    async def stream_chat(self, messages, model, on_token):
        self.calls.append({"messages": messages, "model": model})
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        for token in self.tokens:
            await on_token(token)
        return "".join(self.tokens)

    async def complete(self, messages, model):
        self.summary_calls.append(messages)
        return self.summary

    async def embed_batch(self, texts, model):
        if self.embed_error is not None:
            raise self.embed_error
        self.embedded.extend(texts)
        return [keyword_vector(t) for t in texts]

    async def embed_text(self, text, model):
        if self.embed_error is not None:
            raise self.embed_error
        return keyword_vector(text)


class MockSearchService:
    """Mock web fetcher returning canned pages."""

    def __init__(self, pages=None, error=None):
        self._pages = pages if pages is not None else []
        self._error = error
        self.fetched = []

    def search_urls(self, message):
        return ["https://www.example.com/search?q=" + normalize_query(message)]

    async def fetch_all(self, urls):
        self.fetched.extend(urls)
        if self._error is not None:
            raise self._error
        return list(self._pages)


class RecordingSubscriber:
    """Collects every event published to it."""

    def __init__(self):
        self.events = []

    async def send_json(self, payload):
        self.events.append(payload)


SAMPLE_PAGE = FetchedPage(
    source_url="https://fr.wikipedia.org/wiki/Python",
    text=(
        "Python est un langage de programmation.\n\n"
        "Paris est la capitale de la France.\n\n"
        "Le football se joue à onze."
    ),
)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        app_data_root=tmp_path,
        chunk_size=40,
        chunk_overlap=0,
        retrieval_top_k=2,
        memory_max_tokens=2000,
    )


@pytest.fixture
def store(settings):
    settings.ensure_directories()
    return ConversationStore(settings.conversations_dir, default_model=settings.default_model)


@pytest.fixture
def subscriber():
    return RecordingSubscriber()


@pytest.fixture
def hub(subscriber):
    stream_hub = StreamHub()
    stream_hub.attach("test", subscriber)
    return stream_hub


@pytest.fixture
def make_engine(settings, store, hub):
    """Factory building an engine around the given mocks."""

    def _make(llm=None, search=None, engine_settings=None):
        engine_settings = engine_settings or settings
        llm = llm or MockLLMService()
        search = search or MockSearchService(pages=[SAMPLE_PAGE])
        return GenerationEngine(
            store=store,
            tools=ToolRegistry(),
            llm_service=llm,
            retrieval=RetrievalPipeline(search, llm, engine_settings),
            hub=hub,
            settings=engine_settings,
            token_counter=WordCounter(),
        )

    return _make
