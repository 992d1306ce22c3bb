# ABOUTME: Content extraction: locates the article body inside an arbitrary HTML page.
# ABOUTME: Applies the selector cascade, strips noise, resolves lazy images, rewrites URLs.

import copy
import re
from urllib.parse import urljoin, urlparse

import structlog
from bs4 import BeautifulSoup, Tag

from feed_vault.errors import ExtractionFailed
from feed_vault.models import ExtractedContent, ImageReference
from feed_vault.services.content_rules import (
    CONTENT_SELECTORS,
    LAZY_SRC_ATTRIBUTES,
    MIN_PARAGRAPH_LENGTH,
    MIN_PARAGRAPHS,
    NOISE_MATCHERS,
    UNWANTED_SELECTORS,
    UNWANTED_TAGS,
)

log = structlog.get_logger()

MIN_CONTENT_LENGTH = 100

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
_ROOT_RELATIVE_RE = re.compile(r'(?<![\w-])(src|href)="/(?!/)')
_DESCRIPTION_RE = re.compile(r"^description$", re.IGNORECASE)


def extract_article(
    html: str | bytes,
    url: str,
    fallback_title: str | None = None,
    fallback_excerpt: str | None = None,
    min_content_length: int = MIN_CONTENT_LENGTH,
    encoding: str | None = None,
) -> ExtractedContent:
    """Extract the article body from a fetched page.

    Image sources in the returned body are absolute URLs, matching the
    entries of ``images``; root-relative links point at the article's origin.

    Raw bytes are decoded by BeautifulSoup: ``encoding`` (the HTTP header
    charset) first, then the page's own ``<meta charset>``.

    Raises ExtractionFailed when no container is found or the cleaned body
    has fewer than ``min_content_length`` characters of text.
    """
    if isinstance(html, bytes):
        soup = BeautifulSoup(html, "html.parser", from_encoding=encoding)
    else:
        soup = BeautifulSoup(html, "html.parser")

    title = _page_title(soup) or fallback_title or ""
    excerpt = _meta_description(soup) or fallback_excerpt

    container, selector = _find_container(soup)
    if container is None:
        raise ExtractionFailed(url, "no content container found")

    _strip_noise(container)
    images = _resolve_images(container, url)
    body_html = _rewrite_html(container.decode_contents(), url)

    text_length = len(html_to_text(body_html))
    if text_length < min_content_length:
        raise ExtractionFailed(url, f"extracted text too short ({text_length} chars)")

    log.debug(
        "content_extracted",
        url=url,
        selector=selector,
        text_length=text_length,
        images=len(images),
    )
    return ExtractedContent(
        title=title,
        body_html=body_html,
        excerpt=excerpt,
        images=images,
        selector=selector,
    )


def html_to_text(html: str) -> str:
    return BeautifulSoup(html, "html.parser").get_text().strip()


def rewrite_image_sources(body_html: str, replacements: dict[str, str]) -> str:
    """Point archived images at their local copies.

    ``replacements`` maps the absolute remote URL to the local src. Images
    that were not archived keep their remote src.
    """
    if not replacements:
        return body_html

    soup = BeautifulSoup(body_html, "html.parser")
    for img in soup.find_all("img"):
        local_src = replacements.get(img.get("src", ""))
        if local_src:
            img["src"] = local_src
            img.attrs.pop("srcset", None)
            img.attrs.pop("sizes", None)
    return str(soup)


def _page_title(soup: BeautifulSoup) -> str | None:
    tag = soup.find("title")
    if tag is None:
        return None
    return tag.get_text(strip=True) or None


def _meta_description(soup: BeautifulSoup) -> str | None:
    tag = soup.find("meta", attrs={"name": _DESCRIPTION_RE})
    if tag is None:
        return None
    return (tag.get("content") or "").strip() or None


def _find_container(soup: BeautifulSoup) -> tuple[Tag | None, str | None]:
    for selector in CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            return element, selector

    paragraphs = [
        p for p in soup.find_all("p") if len(p.get_text().strip()) > MIN_PARAGRAPH_LENGTH
    ]
    if len(paragraphs) < MIN_PARAGRAPHS:
        return None, None

    log.debug("content_paragraph_fallback", paragraphs=len(paragraphs))
    wrapper = soup.new_tag("div")
    for p in paragraphs:
        wrapper.append(copy.copy(p))
    return wrapper, None


def _strip_noise(container: Tag) -> None:
    doomed: list[Tag] = list(container.find_all(list(UNWANTED_TAGS)))
    for selector in UNWANTED_SELECTORS:
        doomed.extend(container.select(selector))
    doomed.extend(
        tag
        for tag in container.find_all(True)
        if any(matcher.matches(tag) for matcher in NOISE_MATCHERS)
    )

    for tag in doomed:
        # Already gone with an ancestor
        if not tag.decomposed:
            tag.decompose()


def _resolve_images(container: Tag, base_url: str) -> list[ImageReference]:
    references: list[ImageReference] = []
    seen: set[str] = set()

    for img in container.find_all("img"):
        for attr in LAZY_SRC_ATTRIBUTES:
            lazy_src = (img.get(attr) or "").strip()
            if lazy_src and not lazy_src.startswith("data:"):
                img["src"] = lazy_src
                break
        for attr in LAZY_SRC_ATTRIBUTES:
            img.attrs.pop(attr, None)

        src = (img.get("src") or "").strip()
        if not src or src.startswith("data:"):
            continue

        absolute = urljoin(base_url, src)
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        img["src"] = absolute

        if absolute not in seen:
            seen.add(absolute)
            references.append(ImageReference(url=absolute, alt=img.get("alt") or None))

    return references


def _rewrite_html(html: str, url: str) -> str:
    html = _SCRIPT_RE.sub("", html)
    html = _STYLE_RE.sub("", html)

    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return _ROOT_RELATIVE_RE.sub(lambda m: f'{m.group(1)}="{origin}/', html)
