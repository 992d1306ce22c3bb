# ABOUTME: Pydantic schemas for data validation and serialization.
# ABOUTME: Defines archive state, parsed feed items, extraction output, and image records.

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class ArchiveState(StrEnum):
    UNARCHIVED = "unarchived"
    ARCHIVE_FAILED = "archive_failed"
    ARCHIVED = "archived"
    PURGED = "purged"


class ParsedArticle(BaseModel):
    """One item from a parsed feed, before it is stored."""

    title: str
    link: str
    description: str | None = None
    content: str | None = None
    pub_date: datetime | None = None


class ParsedFeed(BaseModel):
    """Output of the feed fetcher."""

    title: str
    description: str | None = None
    items: list[ParsedArticle] = Field(default_factory=list)


class ImageReference(BaseModel):
    """An image found in extracted content, resolved to an absolute URL."""

    url: str
    alt: str | None = None


class ExtractedContent(BaseModel):
    """Cleaned article body located inside a fetched page."""

    title: str
    body_html: str
    excerpt: str | None = None
    images: list[ImageReference] = Field(default_factory=list)
    selector: str | None = None


class DownloadedImage(BaseModel):
    """An image stored in local image storage."""

    original_url: str
    local_path: str
    file_size: int
    alt_text: str | None = None
    width: int | None = None
    height: int | None = None


class ArticlePreview(BaseModel):
    """Article content for the reader, falling back to feed content."""

    id: int
    title: str
    content: str
    excerpt: str
    link: str
    featured_image: str | None
    archive_state: ArchiveState
    is_full_content: bool


class CleanupResult(BaseModel):
    purged_articles: int
    deleted_images: int
    deleted_files: int
