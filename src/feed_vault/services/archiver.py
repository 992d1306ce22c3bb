# ABOUTME: Article archival: fetch page, extract body, archive images, write back state.
# ABOUTME: Drains the unarchived queue one article at a time with a fixed delay.

import asyncio

import httpx
import structlog

from feed_vault.config import Settings, get_settings
from feed_vault.db.models import Article
from feed_vault.db.store import ArticleStore
from feed_vault.errors import ExtractionFailed, FetchError, ImageFetchFailed
from feed_vault.models import ArchiveState
from feed_vault.services.extractor import extract_article, rewrite_image_sources
from feed_vault.services.images import ImageStorage, download_image

log = structlog.get_logger()

ARTICLE_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


async def fetch_article_html(
    url: str, client: httpx.AsyncClient, settings: Settings | None = None
) -> tuple[bytes, str | None]:
    """GET an article page, following redirects. Raises FetchError.

    Returns the raw body and the charset from the Content-Type header, if any,
    so the parser can fall back to the page's own ``<meta charset>``.
    """
    settings = settings or get_settings()
    try:
        response = await client.get(
            url,
            headers={"User-Agent": settings.user_agent, "Accept": ARTICLE_ACCEPT},
            timeout=settings.article_timeout,
            follow_redirects=True,
        )
    except httpx.HTTPError as e:
        raise FetchError(url, reason=str(e) or type(e).__name__) from e

    if not response.is_success:
        raise FetchError(url, status_code=response.status_code)
    return response.content, response.charset_encoding


async def archive_article(
    article: Article,
    store: ArticleStore,
    storage: ImageStorage,
    client: httpx.AsyncClient,
    settings: Settings | None = None,
) -> ArchiveState:
    """Archive one article's full content and images.

    The article ends in ARCHIVED, or ARCHIVE_FAILED when the page could not
    be fetched or no usable body was found. Individual image failures are
    logged and skipped.
    """
    settings = settings or get_settings()

    try:
        html, encoding = await fetch_article_html(article.link, client, settings)
        extracted = extract_article(
            html,
            article.link,
            fallback_title=article.title,
            fallback_excerpt=article.description,
            min_content_length=settings.min_content_length,
            encoding=encoding,
        )
    except (FetchError, ExtractionFailed) as e:
        log.warning(
            "article_archive_failed", article_id=article.id, url=article.link, error=str(e)
        )
        await store.mark_archive_failed(article.id)
        return ArchiveState.ARCHIVE_FAILED

    current = await store.get_article(article.id)
    if current is None or current.archive_state != ArchiveState.UNARCHIVED:
        # Archived or deleted while the page was being fetched
        log.info("article_archive_superseded", article_id=article.id)
        return current.archive_state if current else ArchiveState.UNARCHIVED

    replacements: dict[str, str] = {}
    featured_image: str | None = None

    for ref in extracted.images:
        try:
            image = await download_image(
                ref.url, article.id, storage, client, settings, alt_text=ref.alt
            )
        except ImageFetchFailed as e:
            log.warning(
                "image_download_failed", article_id=article.id, url=ref.url, error=e.reason
            )
            continue

        await store.record_image(article.id, image)
        replacements[ref.url] = storage.public_src(image.local_path)
        if featured_image is None:
            featured_image = image.local_path

    body_html = rewrite_image_sources(extracted.body_html, replacements)
    await store.write_archive(article.id, body_html, featured_image)
    log.info(
        "article_archived",
        article_id=article.id,
        selector=extracted.selector,
        images=len(replacements),
        failed_images=len(extracted.images) - len(replacements),
    )
    return ArchiveState.ARCHIVED


async def process_undownloaded_articles(
    store: ArticleStore,
    storage: ImageStorage,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> int:
    """Archive every unread UNARCHIVED article, sequentially.

    Sleeps ``archive_delay`` seconds between articles. One article's failure
    never stops the rest. Returns the number of articles processed.
    """
    settings = settings or get_settings()
    articles = await store.list_unarchived()
    log.info("archive_queue_started", pending=len(articles))
    if not articles:
        return 0

    if client is None:
        async with httpx.AsyncClient() as own_client:
            return await _drain(articles, store, storage, own_client, settings)
    return await _drain(articles, store, storage, client, settings)


async def _drain(articles, store, storage, client, settings) -> int:
    processed = 0
    for index, article in enumerate(articles):
        if index and settings.archive_delay > 0:
            await asyncio.sleep(settings.archive_delay)

        try:
            await archive_article(article, store, storage, client, settings)
        except Exception:
            # Left UNARCHIVED; the next drain picks it up again
            log.exception("article_archive_error", article_id=article.id, url=article.link)
            continue
        processed += 1

    log.info("archive_queue_done", processed=processed, total=len(articles))
    return processed
