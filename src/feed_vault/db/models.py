# ABOUTME: SQLAlchemy ORM models for feeds, articles and archived images.
# ABOUTME: Defines Feed, Article and ArticleImage tables with cascading relationships.

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from feed_vault.models import ArchiveState


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class Feed(Base):
    __tablename__ = "feeds"

    id: Mapped[int] = mapped_column(primary_key=True)
    url: Mapped[str] = mapped_column(String(2048), unique=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    articles: Mapped[list["Article"]] = relationship(
        back_populates="feed", cascade="all, delete-orphan", passive_deletes=True
    )


class Article(Base):
    __tablename__ = "articles"
    __table_args__ = (
        Index("ix_articles_feed_id", "feed_id"),
        Index("ix_articles_pub_date", "pub_date"),
        Index("ix_articles_is_read", "is_read"),
        Index("ix_articles_archive_state", "archive_state"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    feed_id: Mapped[int] = mapped_column(ForeignKey("feeds.id", ondelete="CASCADE"))
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    content: Mapped[str | None] = mapped_column(Text)
    link: Mapped[str] = mapped_column(String(2048), unique=True)
    pub_date: Mapped[datetime | None] = mapped_column(DateTime)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)

    # Archive
    archive_state: Mapped[ArchiveState] = mapped_column(
        Enum(
            ArchiveState,
            native_enum=False,
            length=20,
            values_callable=lambda states: [s.value for s in states],
        ),
        default=ArchiveState.UNARCHIVED,
    )
    full_content: Mapped[str | None] = mapped_column(Text)
    content_downloaded_at: Mapped[datetime | None] = mapped_column(DateTime)
    featured_image: Mapped[str | None] = mapped_column(String(500))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    feed: Mapped[Feed] = relationship(back_populates="articles")
    images: Mapped[list["ArticleImage"]] = relationship(
        back_populates="article", cascade="all, delete-orphan", passive_deletes=True
    )


class ArticleImage(Base):
    __tablename__ = "article_images"
    __table_args__ = (
        Index("ix_article_images_article_id", "article_id"),
        Index("ix_article_images_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"))
    original_url: Mapped[str] = mapped_column(String(2048))
    local_path: Mapped[str] = mapped_column(String(500))
    alt_text: Mapped[str | None] = mapped_column(Text)
    width: Mapped[int | None] = mapped_column(Integer)
    height: Mapped[int | None] = mapped_column(Integer)
    file_size: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    article: Mapped[Article] = relationship(back_populates="images")
