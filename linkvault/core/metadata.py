"""Page metadata fetching for bookmarks.

Tries a direct HTML fetch first and extracts metadata and main text with
trafilatura. JS-heavy pages usually yield no title that way, so those fall
back to the Microlink extraction API.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx
import trafilatura

logger = logging.getLogger(__name__)

MICROLINK_URL = "https://api.microlink.io"

DIRECT_TIMEOUT = 8.0
EXTRACTOR_TIMEOUT = 10.0

# Maximum page size to extract from (10MB)
MAX_CONTENT_SIZE = 10 * 1024 * 1024

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


@dataclass
class PageMetadata:
    """Metadata of a page; the fields a bookmark takes over on refresh."""

    title: str | None = None
    description: str | None = None
    site_name: str | None = None
    image_url: str | None = None
    content_text: str | None = None

    def to_bookmark_fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "site_name": self.site_name,
            "image_url": self.image_url,
            "content_text": self.content_text,
        }


def extract_metadata(html: str, url: str | None = None) -> PageMetadata:
    """Extract metadata and main text from an HTML document."""
    doc = trafilatura.extract_metadata(html, default_url=url)
    text = trafilatura.extract(
        html,
        include_comments=False,
        include_tables=True,
        favor_recall=True,
    )
    if doc is None:
        return PageMetadata(content_text=text or None)
    return PageMetadata(
        title=doc.title or None,
        description=doc.description or None,
        site_name=doc.sitename or None,
        image_url=doc.image or None,
        content_text=text or None,
    )


class MetadataFetcher:
    """Fetches PageMetadata for URLs."""

    def __init__(
        self,
        direct_timeout: float = DIRECT_TIMEOUT,
        extractor_timeout: float = EXTRACTOR_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._direct_timeout = direct_timeout
        self._extractor_timeout = extractor_timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                limits=httpx.Limits(max_connections=10),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> PageMetadata | None:
        """Fetch metadata for url, or None if neither source had any."""
        direct = await self.fetch_direct(url)
        if direct is not None and direct.title:
            return direct

        extracted = await self.fetch_via_microlink(url)
        if extracted is not None:
            # Keep page text from the direct fetch when the extractor has none
            if direct is not None and not extracted.content_text:
                extracted.content_text = direct.content_text
            return extracted
        return direct

    async def fetch_direct(self, url: str) -> PageMetadata | None:
        client = await self._get_client()
        try:
            response = await client.get(url, headers=BROWSER_HEADERS, timeout=self._direct_timeout)
        except httpx.HTTPError as e:
            logger.info(f"Direct fetch of {url} failed: {type(e).__name__}: {e}")
            return None

        if response.status_code >= 400:
            logger.info(f"Direct fetch of {url} returned {response.status_code}")
            return None

        content_type = response.headers.get("content-type", "")
        if "text/html" not in content_type:
            return None

        content_length = response.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_CONTENT_SIZE:
            logger.info(f"Skipping {url}: content too large ({content_length} bytes)")
            return None

        html = response.text
        # trafilatura is CPU-bound
        return await asyncio.get_running_loop().run_in_executor(None, extract_metadata, html, url)

    async def fetch_via_microlink(self, url: str) -> PageMetadata | None:
        client = await self._get_client()
        try:
            response = await client.get(
                MICROLINK_URL,
                params={"url": url},
                headers={"Accept": "application/json"},
                timeout=self._extractor_timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.info(f"Microlink lookup of {url} failed: {type(e).__name__}: {e}")
            return None

        if not isinstance(payload, dict) or payload.get("status") != "success":
            return None
        data = payload.get("data")
        if not isinstance(data, dict):
            return None

        image = data.get("image")
        return PageMetadata(
            title=data.get("title"),
            description=data.get("description"),
            site_name=data.get("publisher"),
            image_url=image.get("url") if isinstance(image, dict) else None,
        )
