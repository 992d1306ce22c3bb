# ABOUTME: Shared test fixtures for feed-vault.
# ABOUTME: Provides a temp SQLite store, image storage, settings and a fake HTTP web.

from collections.abc import AsyncGenerator
from io import BytesIO

import httpx
import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_vault.config import Settings
from feed_vault.db.session import create_engine, create_tables
from feed_vault.db.store import ArticleStore
from feed_vault.services.images import ImageStorage


def make_png(width: int = 4, height: int = 3) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), color=(200, 10, 10)).save(buf, format="PNG")
    return buf.getvalue()


def make_rss(items: list[dict], title: str = "Test Feed") -> str:
    """Minimal RSS 2.0 document; each item dict has title/link and optional description."""
    rendered = "".join(
        f"""
    <item>
      <title>{item["title"]}</title>
      <link>{item["link"]}</link>
      <description>{item.get("description", "Snippet for " + item["title"])}</description>
      <pubDate>Sun, 08 Feb 2026 12:00:00 GMT</pubDate>
    </item>"""
        for item in items
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>{title}</title>
    <link>https://example.com/</link>
    <description>A feed for tests</description>{rendered}
  </channel>
</rss>
"""


LOREM = (
    "Archived articles need enough text to pass the sanity threshold, so this "
    "sentence is deliberately long and rather uninteresting to read aloud. "
)


def make_article_page(body: str, title: str = "Page Title", description: str | None = None) -> str:
    meta = f'<meta name="description" content="{description}">' if description else ""
    return f"""<!DOCTYPE html>
<html>
<head><title>{title}</title>{meta}</head>
<body>
  <nav><a href="/">Home</a></nav>
  {body}
  <footer>Copyright</footer>
</body>
</html>
"""


class FakeWeb:
    """Canned HTTP responses keyed by absolute URL, served through httpx.MockTransport."""

    def __init__(self):
        self.routes: dict[str, tuple[int, bytes, str] | Exception] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url: str,
        body: str | bytes = "",
        status: int = 200,
        content_type: str = "text/html; charset=utf-8",
    ) -> None:
        content = body.encode() if isinstance(body, str) else body
        self.routes[url] = (status, content, content_type)

    def add_error(self, url: str, error: Exception) -> None:
        self.routes[url] = error

    def add_image(self, url: str, data: bytes | None = None) -> None:
        self.add(url, data if data is not None else make_png(), content_type="image/png")

    @property
    def requested_urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, content=b"not found")
        if isinstance(route, Exception):
            raise route
        status, content, content_type = route
        return httpx.Response(status, content=content, headers={"content-type": content_type})


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        db_path=tmp_path / "test.db",
        storage_dir=tmp_path / "images",
        archive_delay=0,
    )


@pytest.fixture
async def session_factory(settings) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Temporary SQLite database with all tables created."""
    engine = create_engine(settings.database_url)
    await create_tables(engine)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def store(session_factory) -> ArticleStore:
    return ArticleStore(session_factory)


@pytest.fixture
def storage(settings) -> ImageStorage:
    return ImageStorage.from_settings(settings)


@pytest.fixture
def web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture
async def http_client(web) -> AsyncGenerator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(web.handler)) as client:
        yield client
