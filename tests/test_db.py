# ABOUTME: Tests for the article store and its ORM models.
# ABOUTME: Verifies feed/article CRUD, link dedup, cascades and archive-state transitions.

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select, update

from feed_vault.db.models import Article, ArticleImage
from feed_vault.errors import DuplicateFeedError, FeedNotFoundError
from feed_vault.models import ArchiveState, DownloadedImage, ParsedArticle


def _item(link: str, title: str = "Post", **kwargs) -> ParsedArticle:
    return ParsedArticle(title=title, link=link, **kwargs)


def _image(name: str = "1_1_abc.png") -> DownloadedImage:
    return DownloadedImage(
        original_url=f"https://cdn.example.com/{name}", local_path=name, file_size=10
    )


async def test_insert_feed_and_get(store):
    """Feed can be created and retrieved."""
    feed = await store.insert_feed("https://example.com/feed.xml", "Test Feed", "About")

    loaded = await store.get_feed(feed.id)
    assert loaded is not None
    assert loaded.title == "Test Feed"
    assert loaded.description == "About"
    assert loaded.created_at is not None


async def test_insert_feed_duplicate_url(store):
    """Duplicate feed URLs are rejected with DuplicateFeedError."""
    await store.insert_feed("https://example.com/feed.xml", "First")

    with pytest.raises(DuplicateFeedError):
        await store.insert_feed("https://example.com/feed.xml", "Second")

    assert len(await store.list_feeds()) == 1


async def test_list_feeds_ordered_by_title(store):
    await store.insert_feed("https://b.example.com/feed", "Beta")
    await store.insert_feed("https://a.example.com/feed", "Alpha")

    titles = [f.title for f in await store.list_feeds()]
    assert titles == ["Alpha", "Beta"]


async def test_update_feed(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Old")

    updated = await store.update_feed(feed.id, "New", "Fresh description")

    assert updated.title == "New"
    assert (await store.get_feed(feed.id)).description == "Fresh description"
    assert await store.update_feed(9999, "Nope") is None


async def test_insert_article_dedups_by_link(store):
    """An existing link is never re-inserted, even with changed title/content."""
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    other = await store.insert_feed("https://other.example.com/feed.xml", "Other")

    first, created = await store.insert_article(feed.id, _item("https://example.com/a", "Original"))
    assert created is True

    again, created = await store.insert_article(
        other.id, _item("https://example.com/a", "Changed upstream", content="new body")
    )
    assert created is False
    assert again.id == first.id
    assert again.title == "Original"

    articles = await store.list_articles()
    assert len(articles) == 1
    assert articles[0].feed_id == feed.id


async def test_find_by_link(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))

    found = await store.find_by_link("https://example.com/a")

    assert found.id == article.id
    assert await store.find_by_link("https://example.com/missing") is None


async def test_new_article_defaults(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))

    loaded = await store.get_article(article.id)
    assert loaded.is_read is False
    assert loaded.archive_state == ArchiveState.UNARCHIVED
    assert loaded.full_content is None
    assert loaded.content_downloaded_at is None


async def test_list_articles_filters(store):
    feed_a = await store.insert_feed("https://a.example.com/feed", "A")
    feed_b = await store.insert_feed("https://b.example.com/feed", "B")
    a1, _ = await store.insert_article(feed_a.id, _item("https://a.example.com/1"))
    await store.insert_article(feed_a.id, _item("https://a.example.com/2"))
    await store.insert_article(feed_b.id, _item("https://b.example.com/1"))
    await store.set_read(a1.id)

    assert len(await store.list_articles()) == 3
    assert len(await store.list_articles(feed_id=feed_a.id)) == 2
    assert len(await store.list_articles(unread_only=True)) == 2
    unread_a = await store.list_articles(feed_id=feed_a.id, unread_only=True)
    assert [a.link for a in unread_a] == ["https://a.example.com/2"]


async def test_unread_counts(store):
    feed_a = await store.insert_feed("https://a.example.com/feed", "A")
    feed_b = await store.insert_feed("https://b.example.com/feed", "B")
    a1, _ = await store.insert_article(feed_a.id, _item("https://a.example.com/1"))
    await store.insert_article(feed_a.id, _item("https://a.example.com/2"))
    b1, _ = await store.insert_article(feed_b.id, _item("https://b.example.com/1"))

    await store.set_read(a1.id)
    await store.set_read(b1.id)

    assert await store.count_unread(feed_a.id) == 1
    assert await store.count_unread(feed_b.id) == 0
    assert await store.unread_counts() == {feed_a.id: 1}


async def test_set_read_and_unread(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))

    assert await store.set_read(article.id) is True
    assert (await store.get_article(article.id)).is_read is True

    await store.set_read(article.id, is_read=False)
    assert (await store.get_article(article.id)).is_read is False

    assert await store.set_read(9999) is False


async def test_list_unarchived_excludes_read_and_archived(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    pending, _ = await store.insert_article(feed.id, _item("https://example.com/pending"))
    read, _ = await store.insert_article(feed.id, _item("https://example.com/read"))
    done, _ = await store.insert_article(feed.id, _item("https://example.com/done"))
    failed, _ = await store.insert_article(feed.id, _item("https://example.com/failed"))

    await store.set_read(read.id)
    await store.write_archive(done.id, "<p>body</p>", None)
    await store.mark_archive_failed(failed.id)

    unarchived = await store.list_unarchived()
    assert [a.id for a in unarchived] == [pending.id]


async def test_write_archive_transitions_to_archived(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))

    assert await store.write_archive(article.id, "<p>full</p>", "1_1_abc.png") is True

    loaded = await store.get_article(article.id)
    assert loaded.archive_state == ArchiveState.ARCHIVED
    assert loaded.full_content == "<p>full</p>"
    assert loaded.featured_image == "1_1_abc.png"
    assert loaded.content_downloaded_at is not None


async def test_mark_archive_failed_keeps_content_null(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))

    await store.mark_archive_failed(article.id)

    loaded = await store.get_article(article.id)
    assert loaded.archive_state == ArchiveState.ARCHIVE_FAILED
    assert loaded.full_content is None
    assert loaded.content_downloaded_at is not None


async def test_archive_transitions_only_from_unarchived(store):
    """Once archived (or failed), a second write is refused."""
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))
    await store.mark_archive_failed(article.id)

    assert await store.write_archive(article.id, "<p>late</p>", None) is False
    assert (await store.get_article(article.id)).archive_state == ArchiveState.ARCHIVE_FAILED


async def test_purge_archives_respects_cutoff(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    old, _ = await store.insert_article(feed.id, _item("https://example.com/old", "Old"))
    recent, _ = await store.insert_article(feed.id, _item("https://example.com/new", "New"))
    now = datetime.now(UTC)
    await store.write_archive(old.id, "<p>old</p>", "old.png", now=now - timedelta(days=8))
    await store.write_archive(recent.id, "<p>new</p>", "new.png", now=now - timedelta(days=6))

    purged = await store.purge_archives(now - timedelta(days=7))

    assert purged == [old.id]
    old_loaded = await store.get_article(old.id)
    assert old_loaded.archive_state == ArchiveState.PURGED
    assert old_loaded.full_content is None
    assert old_loaded.featured_image is None
    assert old_loaded.content_downloaded_at is None
    assert old_loaded.title == "Old"
    assert old_loaded.link == "https://example.com/old"

    recent_loaded = await store.get_article(recent.id)
    assert recent_loaded.archive_state == ArchiveState.ARCHIVED
    assert recent_loaded.full_content == "<p>new</p>"


async def test_purged_article_not_requeued(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))
    now = datetime.now(UTC)
    await store.write_archive(article.id, "<p>x</p>", None, now=now - timedelta(days=8))
    await store.purge_archives(now - timedelta(days=7))

    assert await store.list_unarchived() == []


async def test_reset_archive_state(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    a, _ = await store.insert_article(feed.id, _item("https://example.com/a"))
    b, _ = await store.insert_article(feed.id, _item("https://example.com/b"))
    await store.write_archive(a.id, "<p>x</p>", "a.png")
    await store.mark_archive_failed(b.id)

    assert await store.reset_archive_state() == 2

    for article_id in (a.id, b.id):
        loaded = await store.get_article(article_id)
        assert loaded.archive_state == ArchiveState.UNARCHIVED
        assert loaded.full_content is None
        assert loaded.featured_image is None
        assert loaded.content_downloaded_at is None


async def test_record_and_list_images(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))

    await store.record_image(article.id, _image("first.png"))
    await store.record_image(article.id, _image("second.png"))

    images = await store.list_images(article.id)
    assert [i.local_path for i in images] == ["first.png", "second.png"]
    assert images[0].original_url == "https://cdn.example.com/first.png"


async def test_old_images_listed_and_deleted(store, session_factory):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))
    old = await store.record_image(article.id, _image("old.png"))
    await store.record_image(article.id, _image("new.png"))

    now = datetime.now(UTC)
    async with session_factory() as session:
        await session.execute(
            update(ArticleImage)
            .where(ArticleImage.id == old.id)
            .values(created_at=now - timedelta(days=8))
        )
        await session.commit()

    stale = await store.list_old_images(now - timedelta(days=7))
    assert [i.local_path for i in stale] == ["old.png"]

    assert await store.delete_images([i.id for i in stale]) == 1
    assert [i.local_path for i in await store.list_images(article.id)] == ["new.png"]
    assert await store.delete_images([]) == 0


async def test_old_images_skip_archived_articles(store, session_factory):
    """An old image stays while its article still shows the archive it belongs to."""
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    archived, _ = await store.insert_article(feed.id, _item("https://example.com/a"))
    failed, _ = await store.insert_article(feed.id, _item("https://example.com/b"))
    await store.record_image(archived.id, _image("kept.png"))
    await store.record_image(failed.id, _image("orphan.png"))
    await store.write_archive(archived.id, "<p>x</p>", "kept.png")
    await store.mark_archive_failed(failed.id)

    now = datetime.now(UTC)
    async with session_factory() as session:
        await session.execute(update(ArticleImage).values(created_at=now - timedelta(days=8)))
        await session.commit()

    stale = await store.list_old_images(now - timedelta(days=7))
    assert [i.local_path for i in stale] == ["orphan.png"]


async def test_list_images_for_articles(store):
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    a, _ = await store.insert_article(feed.id, _item("https://example.com/a"))
    b, _ = await store.insert_article(feed.id, _item("https://example.com/b"))
    c, _ = await store.insert_article(feed.id, _item("https://example.com/c"))
    await store.record_image(a.id, _image("a.png"))
    await store.record_image(b.id, _image("b.png"))
    await store.record_image(c.id, _image("c.png"))

    images = await store.list_images_for_articles([a.id, c.id])

    assert sorted(i.local_path for i in images) == ["a.png", "c.png"]
    assert await store.list_images_for_articles([]) == []


async def test_delete_feed_cascades(store, session_factory):
    """Deleting a feed removes its articles and image rows, returning image paths."""
    feed = await store.insert_feed("https://example.com/feed.xml", "Feed")
    keep = await store.insert_feed("https://keep.example.com/feed.xml", "Keep")
    article, _ = await store.insert_article(feed.id, _item("https://example.com/a"))
    kept_article, _ = await store.insert_article(keep.id, _item("https://keep.example.com/a"))
    await store.record_image(article.id, _image("gone.png"))

    paths = await store.delete_feed(feed.id)

    assert paths == ["gone.png"]
    assert await store.get_feed(feed.id) is None
    async with session_factory() as session:
        articles = (await session.execute(select(Article))).scalars().all()
        images = (await session.execute(select(ArticleImage))).scalars().all()
    assert [a.id for a in articles] == [kept_article.id]
    assert images == []


async def test_delete_missing_feed(store):
    with pytest.raises(FeedNotFoundError):
        await store.delete_feed(404)
