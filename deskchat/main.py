"""
FastAPI application entrypoint.

Registers routers, initializes telemetry, and creates service instances
on startup.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from deskchat.core.config import Settings, get_settings
from deskchat.core.telemetry import setup_telemetry
from deskchat.core.tokens import TokenCounter
from deskchat.routers import health, ws
from deskchat.services.dispatcher import CommandDispatcher
from deskchat.services.engine import GenerationEngine
from deskchat.services.llm_client import OllamaService
from deskchat.services.rag import RetrievalPipeline
from deskchat.services.registry import Catalog, ToolRegistry
from deskchat.services.search import WebSearchService
from deskchat.services.store import ConversationStore
from deskchat.services.streaming import StreamHub

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    llm_service: OllamaService | None = None,
    search_service: WebSearchService | None = None,
    token_counter: TokenCounter | None = None,
) -> FastAPI:
    """
    Build the application.

    Services default to the real Ollama runtime and web fetcher; tests
    pass stand-ins instead.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        """
        Application lifespan handler.
        Prepares the data directories and wires the services on startup.
        """
        # Configure logging
        logging.basicConfig(level=settings.log_level)

        # Initialize telemetry
        setup_telemetry(settings.app_name, settings.otel_console_export)

        settings.ensure_directories()

        llm = llm_service or OllamaService(settings)
        search = search_service or WebSearchService(settings)
        store = ConversationStore(
            settings.conversations_dir,
            default_model=settings.default_model,
            idempotent_create=settings.idempotent_create,
        )
        tools = ToolRegistry()
        catalog = Catalog.load(settings.models_dir, settings.templates_dir)
        hub = StreamHub()
        engine = GenerationEngine(
            store=store,
            tools=tools,
            llm_service=llm,
            retrieval=RetrievalPipeline(search, llm, settings),
            hub=hub,
            settings=settings,
            token_counter=token_counter,
        )

        # Store in app state for the routers
        application.state.settings = settings
        application.state.stream_hub = hub
        application.state.engine = engine
        application.state.dispatcher = CommandDispatcher(engine, store, tools, catalog)

        logger.info("deskchat backend started (data in %s).", settings.root_dir)
        yield
        logger.info("deskchat backend shutting down.")

    application = FastAPI(
        title="deskchat",
        description="Conversation and generation backend for the desktop chat client.",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Register routers
    application.include_router(health.router)
    application.include_router(ws.router)
    return application


def run() -> None:
    """Console entry point: serve the backend with uvicorn."""
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
