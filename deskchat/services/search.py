"""
Web search fetcher.

Turns a user message into a search-engine query, fetches the result page
with httpx and extracts its visible text for chunking.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser

import httpx

from deskchat.core.config import Settings
from deskchat.core.errors import RetrievalFetchError
from deskchat.core.telemetry import get_tracer

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) deskchat/0.1"

_SKIPPED_TAGS = {"script", "style", "noscript", "template", "head"}


@dataclass
class FetchedPage:
    """Text extracted from one fetched page."""

    source_url: str
    text: str


class _TextExtractor(HTMLParser):
    """Collects text nodes outside of script/style blocks."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._skip_depth = 0
        self.parts: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag):
        if tag in _SKIPPED_TAGS and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data):
        if not self._skip_depth and data.strip():
            self.parts.append(data.strip())


def extract_text(html: str) -> str:
    """Visible text of an HTML document, one text node per line."""
    parser = _TextExtractor()
    parser.feed(html)
    parser.close()
    return "\n".join(parser.parts)


def normalize_query(message: str) -> str:
    """Lowercase, drop ``?.,!`` and join the remaining words with ``+``."""
    cleaned = re.sub(r"[?.,!]", "", message.lower())
    return "+".join(cleaned.split())


class WebSearchService:
    """Fetches search-engine result pages for the retrieval pipeline."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._search_url = settings.search_url
        self._timeout = settings.fetch_timeout
        self._concurrency = max(1, settings.fetch_concurrency)
        self._client = client
        self._tracer = get_tracer()

    def search_urls(self, message: str) -> list[str]:
        """URLs to fetch for a user message (one search-engine query)."""
        return [self._search_url + normalize_query(message)]

    async def fetch_all(self, urls: list[str]) -> list[FetchedPage]:
        """
        Fetch every URL with bounded concurrency.

        Raises:
            RetrievalFetchError: if any fetch fails; nothing is retried.
        """
        semaphore = asyncio.Semaphore(self._concurrency)

        async def bounded(client: httpx.AsyncClient, url: str) -> FetchedPage:
            async with semaphore:
                return await self._fetch(client, url)

        if self._client is not None:
            return list(await asyncio.gather(*(bounded(self._client, u) for u in urls)))

        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            return list(await asyncio.gather(*(bounded(client, u) for u in urls)))

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> FetchedPage:
        with self._tracer.start_as_current_span("search.fetch") as span:
            span.set_attribute("search.url", url)
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise RetrievalFetchError(f"Fetching {url} failed: {exc}") from exc

            content_type = response.headers.get("content-type", "")
            body = response.text
            text = extract_text(body) if "html" in content_type or "<" in body[:512] else body
            span.set_attribute("search.text_length", len(text))
            logger.info("Fetched %s (%d chars of text)", url, len(text))
            return FetchedPage(source_url=url, text=text)
