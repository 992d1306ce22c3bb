# ABOUTME: Feed source fetcher: downloads a feed URL and parses it with feedparser.
# ABOUTME: Rejects HTML pages and other non-feed bodies before parsing; no store writes.

import asyncio
import contextlib
from datetime import UTC, datetime

import feedparser
import httpx
import structlog
from bs4 import BeautifulSoup

from feed_vault.config import Settings, get_settings
from feed_vault.errors import EmptyFeedError, FetchError, NotAFeedError
from feed_vault.models import ParsedArticle, ParsedFeed

log = structlog.get_logger()

FEED_ACCEPT = (
    "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"
)

HTML_MARKERS = ("<!doctype html", "<html")
FEED_MARKERS = ("<?xml", "<rss", "<feed", "<rdf:rdf", "<!doctype rss")
UTF8_BOM = b"\xef\xbb\xbf"


def check_feed_body(url: str, body: str | bytes) -> None:
    """Raise NotAFeedError unless the body looks like RSS/Atom XML."""
    if isinstance(body, bytes):
        # Markers are ASCII; latin-1 decodes any byte without guessing the charset
        body = body.removeprefix(UTF8_BOM)[:1024].decode("latin-1")
    head = body.lstrip("\ufeff \t\r\n")[:200].lower()
    if head.startswith(HTML_MARKERS):
        raise NotAFeedError(url, "received an HTML page instead of a feed")
    if not head.startswith(FEED_MARKERS):
        raise NotAFeedError(url)


def _entry_date(entry) -> datetime | None:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            with contextlib.suppress(ValueError, TypeError):
                return datetime(*parsed[:6], tzinfo=UTC)
    return None


def _snippet(html: str | None) -> str | None:
    """Plain-text snippet of an HTML fragment."""
    if not html:
        return None
    text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
    return text or None


def _entry_to_article(entry) -> ParsedArticle | None:
    link = (entry.get("link") or "").strip()
    if not link:
        return None

    summary = entry.get("summary")
    content = None
    if entry.get("content"):
        content = entry.content[0].get("value") or None

    return ParsedArticle(
        title=(entry.get("title") or "").strip() or "Untitled Article",
        link=link,
        description=_snippet(summary) or _snippet(content),
        content=content or summary,
        pub_date=_entry_date(entry),
    )


def parse_feed(url: str, body: str | bytes) -> ParsedFeed:
    """Parse a validated feed body into a ParsedFeed.

    Pass raw bytes so feedparser can honour the XML encoding declaration.

    Raises NotAFeedError if feedparser can make nothing of it and EmptyFeedError
    if it has no items with a link.
    """
    check_feed_body(url, body)
    feed = feedparser.parse(body)

    if feed.bozo and not feed.entries:
        log.error("feed_parse_error", url=url, error=str(feed.bozo_exception))
        raise NotAFeedError(url, f"unparseable feed: {feed.bozo_exception}")

    items = [article for entry in feed.entries if (article := _entry_to_article(entry))]
    if not items:
        raise EmptyFeedError(url)

    return ParsedFeed(
        title=(feed.feed.get("title") or "").strip() or "Untitled Feed",
        description=feed.feed.get("subtitle") or feed.feed.get("description") or None,
        items=items,
    )


async def fetch_feed(
    url: str,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> ParsedFeed:
    """Download and parse the feed at url."""
    settings = settings or get_settings()
    log.info("fetching_feed", url=url)

    try:
        if client is None:
            async with httpx.AsyncClient(follow_redirects=True) as own_client:
                response = await _get(own_client, url, settings)
        else:
            response = await _get(client, url, settings)
    except httpx.HTTPError as e:
        log.error("feed_fetch_error", url=url, error=str(e))
        raise FetchError(url, reason=str(e) or type(e).__name__) from e

    if not response.is_success:
        log.error("feed_http_error", url=url, status=response.status_code)
        raise FetchError(url, status_code=response.status_code)

    parsed = await asyncio.to_thread(parse_feed, url, response.content)
    log.info("feed_parsed", url=url, title=parsed.title, items=len(parsed.items))
    return parsed


async def _get(client: httpx.AsyncClient, url: str, settings: Settings) -> httpx.Response:
    return await client.get(
        url,
        headers={"User-Agent": settings.user_agent, "Accept": FEED_ACCEPT},
        timeout=settings.feed_timeout,
        follow_redirects=True,
    )
