# ABOUTME: Public pipeline operations: add/refresh feeds, archive, clean up, reset.
# ABOUTME: Wires the fetcher, store, archiver, retention and background worker together.

import asyncio

import httpx
import structlog

from feed_vault.config import Settings, get_settings
from feed_vault.db.store import ArticleStore
from feed_vault.errors import (
    DuplicateFeedError,
    ExtractionFailed,
    FeedNotFoundError,
    FeedVaultError,
    FetchError,
)
from feed_vault.models import ArchiveState, ArticlePreview, CleanupResult, ParsedFeed
from feed_vault.services import archiver, retention
from feed_vault.services.extractor import extract_article
from feed_vault.services.fetcher import fetch_feed
from feed_vault.services.images import ImageStorage
from feed_vault.services.worker import ArchiveWorker

log = structlog.get_logger()


class Pipeline:
    """Content acquisition and archival pipeline.

    Adding or refreshing a feed stores its new articles and then schedules a
    background drain of the archive queue without waiting for it. Every drain
    covers all unread UNARCHIVED articles, not only the refreshed feed's.
    Drains never overlap, whether started by the worker or called directly.
    """

    def __init__(
        self,
        store: ArticleStore | None = None,
        storage: ImageStorage | None = None,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or ArticleStore()
        self.storage = storage or ImageStorage.from_settings(self.settings)
        self.client = client
        self._drain_lock = asyncio.Lock()
        self.worker = ArchiveWorker(self.process_undownloaded_articles)

    async def add_feed(self, url: str) -> int:
        """Subscribe to a feed URL and store its items. Returns the new feed id."""
        if await self.store.find_feed_by_url(url) is not None:
            raise DuplicateFeedError(url)

        parsed = await fetch_feed(url, self.client, self.settings)
        feed = await self.store.insert_feed(url, parsed.title, parsed.description)
        new = await self._store_items(feed.id, parsed)
        log.info("feed_added", feed_id=feed.id, url=url, new_articles=new)

        self.worker.schedule()
        return feed.id

    async def refresh_feed(self, feed_id: int) -> int:
        """Re-fetch a feed and store unseen items. Returns the number of new articles."""
        feed = await self.store.get_feed(feed_id)
        if feed is None:
            raise FeedNotFoundError(feed_id)

        parsed = await fetch_feed(feed.url, self.client, self.settings)
        await self.store.update_feed(feed_id, parsed.title, parsed.description)
        new = await self._store_items(feed_id, parsed)
        log.info("feed_refreshed", feed_id=feed_id, new_articles=new)

        self.worker.schedule()
        return new

    async def refresh_all_feeds(self) -> int:
        """Refresh every feed; a failing feed is logged and skipped."""
        feeds = await self.store.list_feeds()
        if not feeds:
            log.warning("no_feeds")
            return 0

        total_new = 0
        for feed in feeds:
            try:
                total_new += await self.refresh_feed(feed.id)
            except FeedVaultError as e:
                log.error("feed_refresh_failed", feed_id=feed.id, url=feed.url, error=str(e))
            except Exception:
                log.exception("feed_refresh_error", feed_id=feed.id, url=feed.url)

        log.info("refresh_complete", feeds=len(feeds), total_new=total_new)
        return total_new

    async def remove_feed(self, feed_id: int) -> None:
        """Delete a feed with its articles, image rows and image files."""
        local_paths = await self.store.delete_feed(feed_id)
        for path in local_paths:
            await self.storage.delete(path)

    async def process_undownloaded_articles(self) -> int:
        """Drain the archive queue once. Waits for any drain already in progress."""
        async with self._drain_lock:
            return await archiver.process_undownloaded_articles(
                self.store, self.storage, self.client, self.settings
            )

    async def cleanup_old_content(self) -> CleanupResult:
        return await retention.cleanup_old_content(self.store, self.storage, self.settings)

    async def reset_archive_state(self) -> int:
        count = await self.store.reset_archive_state()
        log.info("archive_state_reset", articles=count)
        return count

    async def article_preview(self, article_id: int) -> ArticlePreview | None:
        """Article content for reading, falling back to what the feed provided."""
        article = await self.store.get_article(article_id)
        if article is None:
            return None

        archived = article.archive_state == ArchiveState.ARCHIVED and bool(article.full_content)
        if archived:
            content = article.full_content
        else:
            content = article.content or article.description or ""

        return ArticlePreview(
            id=article.id,
            title=article.title,
            content=content,
            excerpt=article.description or "",
            link=article.link,
            featured_image=article.featured_image,
            archive_state=article.archive_state,
            is_full_content=archived,
        )

    async def fetch_article_content(self, article_id: int) -> ArticlePreview | None:
        """Extract an article's page live, without archiving anything.

        Falls back to the feed-provided content when the page cannot be
        fetched or yields no usable body.
        """
        article = await self.store.get_article(article_id)
        if article is None:
            return None

        try:
            if self.client is None:
                async with httpx.AsyncClient() as client:
                    html, encoding = await archiver.fetch_article_html(
                        article.link, client, self.settings
                    )
            else:
                html, encoding = await archiver.fetch_article_html(
                    article.link, self.client, self.settings
                )
            extracted = extract_article(
                html,
                article.link,
                fallback_title=article.title,
                fallback_excerpt=article.description,
                min_content_length=self.settings.min_content_length,
                encoding=encoding,
            )
        except (FetchError, ExtractionFailed) as e:
            log.info("live_extraction_fallback", article_id=article_id, error=str(e))
            return ArticlePreview(
                id=article.id,
                title=article.title,
                content=article.content or article.description or "",
                excerpt=article.description or "",
                link=article.link,
                featured_image=article.featured_image,
                archive_state=article.archive_state,
                is_full_content=False,
            )

        return ArticlePreview(
            id=article.id,
            title=extracted.title or article.title,
            content=extracted.body_html,
            excerpt=extracted.excerpt or "",
            link=article.link,
            featured_image=article.featured_image,
            archive_state=article.archive_state,
            is_full_content=True,
        )

    async def close(self) -> None:
        await self.worker.close()

    async def _store_items(self, feed_id: int, parsed: ParsedFeed) -> int:
        new = 0
        for item in parsed.items:
            _, created = await self.store.insert_article(feed_id, item)
            if created:
                new += 1
        return new
