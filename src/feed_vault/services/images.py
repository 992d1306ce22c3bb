# ABOUTME: Image archiver: downloads article images into local file storage.
# ABOUTME: Files get unique names from article id, timestamp and a random suffix.

import asyncio
import secrets
import time
from io import BytesIO
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx
import structlog
from PIL import Image

from feed_vault.config import Settings, get_settings
from feed_vault.errors import ImageFetchFailed
from feed_vault.models import DownloadedImage

log = structlog.get_logger()

DEFAULT_EXTENSION = "jpg"
MAX_EXTENSION_LENGTH = 5


class ImageStorage:
    """Append-only directory of archived image files.

    Images are addressed by an identifier (the bare filename). Only the
    retention cleanup deletes from it.
    """

    def __init__(self, root: Path, url_prefix: str = "/api/storage/images"):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ImageStorage":
        settings = settings or get_settings()
        return cls(settings.storage_dir, settings.image_url_prefix)

    def new_identifier(self, article_id: int, url: str) -> str:
        millis = int(time.time() * 1000)
        suffix = secrets.token_hex(5)
        return f"{article_id}_{millis}_{suffix}.{extension_for(url)}"

    def public_src(self, identifier: str) -> str:
        """Path embedded in archived HTML, served by the image endpoint."""
        return f"{self.url_prefix}/{identifier}"

    def resolve(self, identifier: str) -> Path | None:
        """Absolute file path for an identifier, or None if invalid or missing."""
        name = PurePosixPath(identifier).name
        if not identifier or name != identifier or name in (".", ".."):
            return None
        path = self.root / identifier
        return path if path.is_file() else None

    async def save(self, identifier: str, data: bytes) -> Path:
        path = self.root / identifier
        await asyncio.to_thread(self._write_new, path, data)
        return path

    async def delete(self, identifier: str) -> bool:
        """Remove a stored file. A file that is already gone is not an error."""
        path = self.root / PurePosixPath(identifier).name
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        return True

    def _write_new(self, path: Path, data: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        # "x" refuses to clobber an existing file
        with path.open("xb") as fh:
            fh.write(data)


def extension_for(url: str) -> str:
    """File extension from the URL path, defaulting to jpg."""
    suffix = PurePosixPath(urlparse(url).path).suffix.lstrip(".").lower()
    if suffix and suffix.isalnum() and len(suffix) <= MAX_EXTENSION_LENGTH:
        return suffix
    return DEFAULT_EXTENSION


def image_dimensions(data: bytes) -> tuple[int | None, int | None]:
    try:
        with Image.open(BytesIO(data)) as img:
            return img.size
    except (OSError, ValueError, Image.DecompressionBombError):
        return None, None


async def download_image(
    url: str,
    article_id: int,
    storage: ImageStorage,
    client: httpx.AsyncClient,
    settings: Settings | None = None,
    alt_text: str | None = None,
) -> DownloadedImage:
    """Fetch one image and store it locally.

    Raises ImageFetchFailed on network errors, non-2xx responses and
    non-image content types.
    """
    settings = settings or get_settings()

    try:
        response = await client.get(
            url,
            headers={"User-Agent": settings.user_agent},
            timeout=settings.image_timeout,
            follow_redirects=True,
        )
    except httpx.HTTPError as e:
        raise ImageFetchFailed(url, str(e) or type(e).__name__) from e

    if not response.is_success:
        raise ImageFetchFailed(url, f"HTTP {response.status_code}")

    content_type = response.headers.get("content-type", "")
    if not content_type.lower().startswith("image/"):
        raise ImageFetchFailed(url, f"not an image ({content_type or 'no content-type'})")

    data = response.content
    identifier = storage.new_identifier(article_id, url)
    try:
        await storage.save(identifier, data)
    except OSError as e:
        raise ImageFetchFailed(url, f"could not store image: {e}") from e

    width, height = await asyncio.to_thread(image_dimensions, data)
    log.debug("image_downloaded", url=url, identifier=identifier, size=len(data))
    return DownloadedImage(
        original_url=url,
        local_path=identifier,
        file_size=len(data),
        alt_text=alt_text,
        width=width,
        height=height,
    )
