# ABOUTME: Retention cleanup for archived article content and image files.
# ABOUTME: Purges archives and deletes images older than the retention window.

from datetime import UTC, datetime

import structlog

from feed_vault.config import Settings, get_settings
from feed_vault.db.store import ArticleStore
from feed_vault.models import CleanupResult
from feed_vault.services.images import ImageStorage

log = structlog.get_logger()


async def cleanup_old_content(
    store: ArticleStore,
    storage: ImageStorage,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> CleanupResult:
    """Reclaim storage used by archives older than the retention window.

    ARCHIVED articles past the window become PURGED (title, description and
    link are kept) and all of their images go with them. Images past the
    window whose article no longer holds an archive are removed too. Files
    are deleted before their rows; a file that is already missing is skipped.
    """
    settings = settings or get_settings()
    cutoff = (now or datetime.now(UTC)) - settings.retention_window

    purged_ids = await store.purge_archives(cutoff)
    log.info("archives_purged", count=len(purged_ids), cutoff=cutoff.isoformat())

    candidates = {
        image.id: image
        for image in [
            *await store.list_images_for_articles(purged_ids),
            *await store.list_old_images(cutoff),
        ]
    }
    deleted_files = 0
    removable: list[int] = []
    for image in candidates.values():
        try:
            if await storage.delete(image.local_path):
                deleted_files += 1
        except OSError as e:
            # Keep the row so a later cleanup retries the file
            log.error("image_file_delete_error", path=image.local_path, error=str(e))
            continue
        removable.append(image.id)

    deleted_rows = await store.delete_images(removable)
    log.info("images_cleaned", rows=deleted_rows, files=deleted_files)

    return CleanupResult(
        purged_articles=len(purged_ids),
        deleted_images=deleted_rows,
        deleted_files=deleted_files,
    )
