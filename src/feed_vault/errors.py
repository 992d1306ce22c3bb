# ABOUTME: Exception hierarchy for feed fetching and article archival.
# ABOUTME: Feed-level errors surface to callers; archive/image errors stay internal.


class FeedVaultError(Exception):
    """Base error for feed-vault."""


class FetchError(FeedVaultError):
    """HTTP request failed: non-2xx status, network error or timeout."""

    def __init__(self, url: str, status_code: int | None = None, reason: str | None = None):
        self.url = url
        self.status_code = status_code
        self.reason = reason
        if status_code is not None:
            message = f"HTTP {status_code} fetching {url}"
        else:
            message = f"Failed to fetch {url}: {reason or 'network error'}"
        super().__init__(message)


class NotAFeedError(FeedVaultError):
    """Response body is an HTML page or otherwise not RSS/Atom XML."""

    def __init__(self, url: str, reason: str = "response is not an RSS/Atom document"):
        self.url = url
        super().__init__(f"{url}: {reason}")


class EmptyFeedError(FeedVaultError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"{url}: feed contains no items")


class DuplicateFeedError(FeedVaultError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Feed already exists: {url}")


class FeedNotFoundError(FeedVaultError):
    def __init__(self, feed_id: int):
        self.feed_id = feed_id
        super().__init__(f"Feed not found: {feed_id}")


class ExtractionFailed(FeedVaultError):
    """No usable article body could be located in the page."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{url}: {reason}")


class ImageFetchFailed(FeedVaultError):
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{url}: {reason}")
