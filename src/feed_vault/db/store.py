# ABOUTME: Article store: feeds, articles and archived images over async SQLAlchemy.
# ABOUTME: Owns link deduplication and the article archive-state transitions.

from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_vault.db.models import Article, ArticleImage, Feed
from feed_vault.db.session import get_session_factory
from feed_vault.errors import DuplicateFeedError, FeedNotFoundError
from feed_vault.models import ArchiveState, DownloadedImage, ParsedArticle

log = structlog.get_logger()


class ArticleStore:
    """Persistent record of feeds, articles and their archived images.

    Every operation runs in its own session and commits before returning, so
    each write is atomic for the single row it touches. Archive-state updates
    are conditional on the current state, which makes them safe to race.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory or get_session_factory()

    # Feeds

    async def list_feeds(self) -> Sequence[Feed]:
        async with self._session_factory() as session:
            result = await session.execute(select(Feed).order_by(Feed.title))
            return result.scalars().all()

    async def get_feed(self, feed_id: int) -> Feed | None:
        async with self._session_factory() as session:
            return await session.get(Feed, feed_id)

    async def find_feed_by_url(self, url: str) -> Feed | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Feed).where(Feed.url == url))
            return result.scalar_one_or_none()

    async def insert_feed(self, url: str, title: str, description: str | None = None) -> Feed:
        """Insert a new feed; raises DuplicateFeedError if the URL is already stored."""
        async with self._session_factory() as session:
            feed = Feed(url=url, title=title, description=description)
            session.add(feed)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise DuplicateFeedError(url) from None
            return feed

    async def update_feed(
        self, feed_id: int, title: str, description: str | None = None
    ) -> Feed | None:
        async with self._session_factory() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                return None
            feed.title = title
            feed.description = description
            feed.updated_at = datetime.now(UTC)
            await session.commit()
            return feed

    async def delete_feed(self, feed_id: int) -> list[str]:
        """Delete a feed with its articles and image rows.

        Returns the local paths of the deleted images so their files can be removed.
        """
        async with self._session_factory() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                raise FeedNotFoundError(feed_id)

            paths = await session.execute(
                select(ArticleImage.local_path)
                .join(Article, ArticleImage.article_id == Article.id)
                .where(Article.feed_id == feed_id)
            )
            local_paths = list(paths.scalars().all())

            await session.delete(feed)
            await session.commit()

        log.info("feed_deleted", feed_id=feed_id, images=len(local_paths))
        return local_paths

    # Articles

    async def get_article(self, article_id: int) -> Article | None:
        async with self._session_factory() as session:
            return await session.get(Article, article_id)

    async def find_by_link(self, link: str) -> Article | None:
        async with self._session_factory() as session:
            return await self._find_by_link(session, link)

    async def list_articles(
        self, feed_id: int | None = None, unread_only: bool = False
    ) -> Sequence[Article]:
        query = select(Article).order_by(Article.pub_date.desc(), Article.id.desc())
        if feed_id is not None:
            query = query.where(Article.feed_id == feed_id)
        if unread_only:
            query = query.where(Article.is_read.is_(False))

        async with self._session_factory() as session:
            result = await session.execute(query)
            return result.scalars().all()

    async def count_unread(self, feed_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(Article.id)).where(
                    Article.feed_id == feed_id, Article.is_read.is_(False)
                )
            )
            return result.scalar_one()

    async def unread_counts(self) -> dict[int, int]:
        """Unread article count keyed by feed id (feeds with none are omitted)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Article.feed_id, func.count(Article.id))
                .where(Article.is_read.is_(False))
                .group_by(Article.feed_id)
            )
            return {feed_id: count for feed_id, count in result.all()}

    async def insert_article(self, feed_id: int, item: ParsedArticle) -> tuple[Article, bool]:
        """Insert an article unless its link is already stored.

        Returns (article, created). When the link exists the stored row is
        returned untouched, even if the incoming title or content differ.
        """
        async with self._session_factory() as session:
            existing = await self._find_by_link(session, item.link)
            if existing is not None:
                return existing, False

            article = Article(
                feed_id=feed_id,
                title=item.title,
                description=item.description,
                content=item.content,
                link=item.link,
                pub_date=item.pub_date,
            )
            session.add(article)
            try:
                await session.commit()
            except IntegrityError:
                # Another refresh inserted the same link first
                await session.rollback()
                existing = await self._find_by_link(session, item.link)
                if existing is None:
                    raise
                return existing, False
            return article, True

    async def set_read(self, article_id: int, is_read: bool = True) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Article).where(Article.id == article_id).values(is_read=is_read)
            )
            await session.commit()
            return result.rowcount > 0

    async def list_unarchived(self) -> Sequence[Article]:
        """Unread articles that have never been archived, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Article)
                .where(
                    Article.archive_state == ArchiveState.UNARCHIVED,
                    Article.is_read.is_(False),
                )
                .order_by(Article.pub_date.desc(), Article.id.desc())
            )
            return result.scalars().all()

    # Archive state

    async def write_archive(
        self,
        article_id: int,
        full_content: str,
        featured_image: str | None,
        now: datetime | None = None,
    ) -> bool:
        """Transition UNARCHIVED -> ARCHIVED with the rewritten body."""
        return await self._transition(
            article_id,
            ArchiveState.ARCHIVED,
            full_content=full_content,
            featured_image=featured_image,
            content_downloaded_at=now or datetime.now(UTC),
        )

    async def mark_archive_failed(self, article_id: int, now: datetime | None = None) -> bool:
        """Transition UNARCHIVED -> ARCHIVE_FAILED; content stays null."""
        return await self._transition(
            article_id,
            ArchiveState.ARCHIVE_FAILED,
            full_content=None,
            featured_image=None,
            content_downloaded_at=now or datetime.now(UTC),
        )

    async def purge_archives(self, cutoff: datetime) -> list[int]:
        """Transition ARCHIVED articles archived before cutoff to PURGED.

        Returns the ids of the articles that were purged.
        """
        expired = (
            Article.archive_state == ArchiveState.ARCHIVED,
            Article.content_downloaded_at < cutoff,
        )
        async with self._session_factory() as session:
            result = await session.execute(select(Article.id).where(*expired))
            article_ids = list(result.scalars().all())
            if not article_ids:
                return []

            await session.execute(
                update(Article)
                .where(Article.id.in_(article_ids), *expired)
                .values(
                    archive_state=ArchiveState.PURGED,
                    full_content=None,
                    featured_image=None,
                    content_downloaded_at=None,
                )
            )
            await session.commit()
            return article_ids

    async def reset_archive_state(self) -> int:
        """Force every article back to UNARCHIVED. Returns the number of rows reset."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(Article).values(
                    archive_state=ArchiveState.UNARCHIVED,
                    full_content=None,
                    featured_image=None,
                    content_downloaded_at=None,
                )
            )
            await session.commit()
            return result.rowcount

    # Images

    async def record_image(self, article_id: int, image: DownloadedImage) -> ArticleImage:
        async with self._session_factory() as session:
            row = ArticleImage(
                article_id=article_id,
                original_url=image.original_url,
                local_path=image.local_path,
                alt_text=image.alt_text,
                width=image.width,
                height=image.height,
                file_size=image.file_size,
            )
            session.add(row)
            await session.commit()
            return row

    async def list_images(self, article_id: int) -> Sequence[ArticleImage]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ArticleImage)
                .where(ArticleImage.article_id == article_id)
                .order_by(ArticleImage.id)
            )
            return result.scalars().all()

    async def list_images_for_articles(
        self, article_ids: Sequence[int]
    ) -> Sequence[ArticleImage]:
        if not article_ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(ArticleImage).where(ArticleImage.article_id.in_(article_ids))
            )
            return result.scalars().all()

    async def list_old_images(self, cutoff: datetime) -> Sequence[ArticleImage]:
        """Images created before cutoff whose article no longer shows an archive."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ArticleImage)
                .join(Article, ArticleImage.article_id == Article.id)
                .where(
                    ArticleImage.created_at < cutoff,
                    Article.archive_state != ArchiveState.ARCHIVED,
                )
            )
            return result.scalars().all()

    async def delete_images(self, image_ids: Sequence[int]) -> int:
        if not image_ids:
            return 0
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ArticleImage).where(ArticleImage.id.in_(image_ids))
            )
            await session.commit()
            return result.rowcount

    # Helpers

    async def _find_by_link(self, session: AsyncSession, link: str) -> Article | None:
        result = await session.execute(select(Article).where(Article.link == link))
        return result.scalar_one_or_none()

    async def _transition(self, article_id: int, state: ArchiveState, **values) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Article)
                .where(
                    Article.id == article_id,
                    Article.archive_state == ArchiveState.UNARCHIVED,
                )
                .values(archive_state=state, **values)
            )
            await session.commit()

        changed = result.rowcount > 0
        if not changed:
            log.warning("archive_transition_skipped", article_id=article_id, target=state)
        return changed
