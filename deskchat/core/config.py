"""
Configuration module using Pydantic Settings.

Loads the model runtime endpoint, retrieval tuning and on-disk layout
from environment variables (prefix ``DESKCHAT_``). Supports .env files
for local development.
"""

import os
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_app_data_root() -> Path:
    """Per-user application data directory, as used by the desktop shell."""
    appdata = os.environ.get("APPDATA")
    if appdata:
        base = Path(appdata)
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Preferences"
    else:
        base = Path.home() / ".local" / "share"
    return base / "deskchat"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DESKCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = "deskchat"

    # Storage
    app_data_root: Path = Field(default_factory=default_app_data_root)

    # Model runtime (Ollama's OpenAI-compatible API)
    ollama_base_url: str = "http://localhost:11434/v1"
    ollama_api_key: str = "ollama"
    default_model: str = "gemma2:2b"
    embedding_model: str = "gemma2:2b"

    # Retrieval
    search_url: str = "https://www.google.com/search?q="
    fetch_timeout: float = 15.0
    fetch_concurrency: int = 4
    chunk_size: int = 300
    chunk_overlap: int = 50
    retrieval_top_k: int = 5
    excerpt_length: int = 150

    # Generation
    memory_max_tokens: int = 2000
    generation_timeout: float | None = None
    auto_create_conversations: bool = True
    idempotent_create: bool = False

    # App
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"
    otel_console_export: bool = False

    @property
    def root_dir(self) -> Path:
        return self.app_data_root / "root"

    @property
    def conversations_dir(self) -> Path:
        return self.root_dir / "conversations"

    @property
    def workspace_dir(self) -> Path:
        return self.root_dir / "workspace"

    @property
    def models_dir(self) -> Path:
        return self.root_dir / "models"

    @property
    def templates_dir(self) -> Path:
        return self.root_dir / "templates"

    def ensure_directories(self) -> None:
        """Create the on-disk layout if it does not exist yet."""
        for directory in (
            self.conversations_dir,
            self.workspace_dir,
            self.models_dir,
            self.templates_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)


def get_settings() -> Settings:
    """Factory for a settings instance."""
    return Settings()
