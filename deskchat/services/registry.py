"""
Static registries served to the client: tools, models, templates, prompts.

Populated once at startup and read-only afterwards.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from deskchat.core.errors import PersistenceError

logger = logging.getLogger(__name__)

SEARCH_PROMPT = """
Répondre à l'utilisateur en utilisant le contexte fourni si nécessaire.
Si le contexte ne correspond pas à la question, ignore le contexte.
Terminer la réponse par une liste des sources utilisées.

Context: {context}
Question: {input}

Réponse:
"""


@dataclass(frozen=True)
class Tool:
    """An augmentation tool the client can enable per message."""

    name: str
    description: str
    prompt_template: str

    def render(self, context: str, question: str) -> str:
        return self.prompt_template.format(context=context, input=question)

    def to_wire(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "prompt": self.prompt_template,
        }


SEARCH_TOOL = Tool(
    name="search",
    description=(
        "A useful tool for when you need to answer questions about current "
        "events. You should ask targeted questions."
    ),
    prompt_template=SEARCH_PROMPT,
)

DEFAULT_PROMPTS = [
    {
        "name": "mistral",
        "system": (
            "You are a helpful assistant. You are given the following extracted "
            "parts of a long document and a question. Provide a conversational "
            "answer based on the context provided."
        ),
        "user": "Context:\n{{context}}\n\nQuestion:\n{{question}}\n\nAnswer:",
    }
]


class ToolRegistry:
    """Read-only lookup of registered tools by name."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        tools = [SEARCH_TOOL] if tools is None else tools
        self._tools = {tool.name: tool for tool in tools}

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def select(self, names: list[str]) -> Tool | None:
        """First registered tool named in a request, in registration order."""
        requested = set(names or [])
        for tool in self._tools.values():
            if tool.name in requested:
                return tool
        return None

    def list(self) -> list[Tool]:
        return list(self._tools.values())


@dataclass
class Catalog:
    """Models, templates and prompts the client can pick from."""

    models: list[dict]
    templates: list[dict]
    prompts: list[dict]

    @classmethod
    def load(cls, models_dir: Path, templates_dir: Path) -> "Catalog":
        """Read every JSON descriptor from the models and templates folders."""
        return cls(
            models=_load_json_dir(models_dir),
            templates=_load_json_dir(templates_dir),
            prompts=[dict(p) for p in DEFAULT_PROMPTS],
        )


def _load_json_dir(directory: Path) -> list[dict]:
    if not directory.is_dir():
        return []
    entries = []
    for path in sorted(directory.glob("*.json")):
        try:
            entries.append(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Cannot load descriptor {path}: {exc}") from exc
    logger.info("Loaded %d descriptors from %s", len(entries), directory)
    return entries
