"""Tests for page metadata fetching (network mocked with httpx.MockTransport)."""

import httpx
import pytest

from linkvault.core.metadata import MetadataFetcher, PageMetadata

ARTICLE_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>Understanding Ownership - The Rust Book</title>
  <meta property="og:title" content="Understanding Ownership">
  <meta property="og:description" content="How Rust manages memory without a garbage collector.">
  <meta property="og:site_name" content="The Rust Book">
  <meta property="og:image" content="https://doc.rust-lang.org/book/img/ferris.png">
</head>
<body>
  <article>
    <h1>Understanding Ownership</h1>
    <p>Ownership is a set of rules that govern how a Rust program manages memory.
    All programs have to manage the way they use a computer's memory while running.</p>
    <p>Some languages have garbage collection that regularly looks for no-longer-used
    memory as the program runs; in other languages, the programmer must explicitly
    allocate and free the memory.</p>
  </article>
</body>
</html>
"""

MICROLINK_PAYLOAD = {
    "status": "success",
    "data": {
        "title": "Rendered Title",
        "description": "Rendered description",
        "publisher": "Example App",
        "image": {"url": "https://example.com/og.png"},
    },
}


def _fetcher(handler) -> MetadataFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return MetadataFetcher(client=client)


@pytest.mark.asyncio
async def test_direct_fetch_reads_open_graph_tags():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "doc.rust-lang.org"
        assert "Mozilla" in request.headers["user-agent"]
        return httpx.Response(200, text=ARTICLE_HTML, headers={"content-type": "text/html; charset=utf-8"})

    fetcher = _fetcher(handler)
    metadata = await fetcher.fetch("https://doc.rust-lang.org/book/ch04-01.html")
    await fetcher.close()

    assert metadata.title == "Understanding Ownership"
    assert metadata.description == "How Rust manages memory without a garbage collector."
    assert metadata.site_name == "The Rust Book"
    assert metadata.image_url == "https://doc.rust-lang.org/book/img/ferris.png"


@pytest.mark.asyncio
async def test_non_html_falls_back_to_microlink():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.host)
        if request.url.host == "api.microlink.io":
            assert request.url.params["url"] == "https://app.example.com/page"
            return httpx.Response(200, json=MICROLINK_PAYLOAD)
        return httpx.Response(200, json={"app": True})

    fetcher = _fetcher(handler)
    metadata = await fetcher.fetch("https://app.example.com/page")
    await fetcher.close()

    assert seen == ["app.example.com", "api.microlink.io"]
    assert metadata == PageMetadata(
        title="Rendered Title",
        description="Rendered description",
        site_name="Example App",
        image_url="https://example.com/og.png",
    )


@pytest.mark.asyncio
async def test_http_error_falls_back_to_microlink():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.microlink.io":
            return httpx.Response(200, json=MICROLINK_PAYLOAD)
        return httpx.Response(403, text="blocked")

    fetcher = _fetcher(handler)
    metadata = await fetcher.fetch("https://blocked.example.com/")
    await fetcher.close()

    assert metadata.title == "Rendered Title"


@pytest.mark.asyncio
async def test_nothing_available_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.microlink.io":
            return httpx.Response(200, json={"status": "fail", "data": None})
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = _fetcher(handler)
    assert await fetcher.fetch("https://down.example.com/") is None
    await fetcher.close()


@pytest.mark.asyncio
async def test_microlink_invalid_json():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>not json</html>")

    fetcher = _fetcher(handler)
    assert await fetcher.fetch_via_microlink("https://example.com/") is None
    await fetcher.close()


@pytest.mark.asyncio
async def test_oversized_page_skipped():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            text="<html></html>",
            headers={"content-type": "text/html", "content-length": str(50 * 1024 * 1024)},
        )

    fetcher = _fetcher(handler)
    assert await fetcher.fetch_direct("https://huge.example.com/") is None
    await fetcher.close()
