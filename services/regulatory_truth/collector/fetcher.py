"""
HTTP Fetcher
============

Thin httpx wrapper that turns a source URL into text, mapping failures
onto the pipeline error taxonomy.

Version: 0.1.0
"""

import re
from dataclasses import dataclass
from typing import Protocol

import httpx
from bs4 import BeautifulSoup

from services.regulatory_truth.errors import FetchError
from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class FetchedContent:
    url: str
    status_code: int
    content: str
    content_type: str | None = None


class Fetcher(Protocol):
    """Anything that can fetch a URL for the Collector."""

    async def fetch(self, url: str) -> FetchedContent: ...


BLOCK_TAGS = [
    "p", "div", "h1", "h2", "h3", "h4", "h5", "h6",
    "ul", "ol", "li", "tr", "table", "section", "article",
]


def html_to_text(markup: str) -> str:
    """Render HTML as plain text, keeping block boundaries as newlines."""
    soup = BeautifulSoup(markup, "lxml")

    # Remove script and style elements
    for element in soup(["script", "style", "noscript"]):
        element.decompose()

    for br in soup.find_all("br"):
        br.replace_with("\n")
    for item in soup.find_all("li"):
        item.insert(0, "- ")
    for cell in soup.find_all(["td", "th"]):
        cell.insert_after(" ")
    for block in soup.find_all(BLOCK_TAGS):
        block.insert_before("\n")
        block.insert_after("\n")

    text = soup.get_text()
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def is_html(content_type: str | None, body: str) -> bool:
    if content_type and "html" in content_type.lower():
        return True
    return body.lstrip()[:15].lower().startswith(("<!doctype html", "<html"))


class HttpFetcher:
    """
    Fetch source documents over HTTP.

    HTML responses are rendered to text; other text bodies are kept as-is.
    """

    def __init__(
        self,
        timeout_seconds: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout_seconds or settings.collector.fetch_timeout_seconds
        self._user_agent = user_agent or settings.collector.user_agent
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                headers={
                    "User-Agent": self._user_agent,
                    "Accept": "text/html, text/plain, application/xhtml+xml",
                },
                follow_redirects=True,
                http2=self._transport is None,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> FetchedContent:
        """
        Fetch `url`.

        Raises:
            FetchError: network failure or non-2xx status; retryable for
                timeouts, connection errors, 408, 429 and 5xx
        """
        try:
            response = await self._get_client().get(url)
        except httpx.TimeoutException as e:
            raise FetchError(f"timeout fetching {url}", url=url) from e
        except httpx.TransportError as e:
            raise FetchError(f"transport error fetching {url}: {e}", url=url) from e

        status = response.status_code
        if status >= 400:
            retry = status in RETRYABLE_STATUS_CODES or status >= 500
            raise FetchError(
                f"HTTP {status} fetching {url}",
                url=url,
                status_code=status,
                retryable=retry,
            )

        content_type = response.headers.get("content-type")
        body = response.text
        if is_html(content_type, body):
            body = html_to_text(body)

        logger.debug("source_fetched", url=url, status=status, chars=len(body))
        return FetchedContent(
            url=str(response.url),
            status_code=status,
            content=body,
            content_type=content_type,
        )
