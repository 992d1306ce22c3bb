# ABOUTME: Ordered selector cascade and noise denylist used by the content extractor.
# ABOUTME: Pure data: extraction consults these in sequence, never branches on them.

import re
from dataclasses import dataclass

from bs4 import Tag

# Earlier selectors are stronger signals of "this is the article body".
# Order matters: the first selector with any match wins.
CONTENT_SELECTORS: tuple[str, ...] = (
    "article",
    '[role="main"]',
    ".post-content",
    ".entry-content",
    ".article-content",
    ".content",
    "main",
    ".post-body",
    ".story-body",
    ".article-body",
    ".news-content",
    ".content-body",
    # Site-specific containers (CNET and similar layouts)
    ".body",
    ".article",
    ".article-wrap",
    ".c-pageArticle",
    ".c-shortcodeListicle",
    ".js-body",
    "#article-body",
    ".articleBody",
)

# Paragraph fallback when no selector matches
MIN_PARAGRAPH_LENGTH = 50
MIN_PARAGRAPHS = 3

UNWANTED_TAGS: tuple[str, ...] = (
    "script",
    "style",
    "noscript",
    "nav",
    "header",
    "footer",
    "aside",
)

UNWANTED_SELECTORS: tuple[str, ...] = (
    ".advertisement",
    ".ads",
    ".social-share",
    ".related-posts",
    ".comments",
    ".comment",
    ".sidebar",
    ".widget",
    ".social-media",
    ".newsletter",
    ".subscription",
)

LAZY_SRC_ATTRIBUTES: tuple[str, ...] = ("data-src", "data-lazy-src", "data-original")


@dataclass(frozen=True, slots=True)
class NoiseMatcher:
    """Matches elements whose class or id contains a noise pattern."""

    name: str
    pattern: re.Pattern[str]

    def matches(self, tag: Tag) -> bool:
        classes = tag.get("class") or []
        if isinstance(classes, str):
            classes = [classes]
        haystack = " ".join([*classes, tag.get("id") or ""])
        return bool(haystack.strip()) and self.pattern.search(haystack) is not None


def _substring(*words: str) -> re.Pattern[str]:
    return re.compile("|".join(re.escape(w) for w in words), re.IGNORECASE)


NOISE_MATCHERS: tuple[NoiseMatcher, ...] = (
    # "ad" only as a whole token so "header" or "lead-in" survive
    NoiseMatcher("ad", re.compile(r"(?:^|[\s_-])(?:ads?|advert\w*)(?=$|[\s_-])", re.IGNORECASE)),
    NoiseMatcher("social", _substring("social")),
    NoiseMatcher("share", _substring("share", "sharing")),
    NoiseMatcher("related", _substring("related", "recommend")),
    NoiseMatcher("comment", _substring("comment")),
    NoiseMatcher("sidebar", _substring("sidebar")),
    NoiseMatcher("newsletter", _substring("newsletter", "subscription")),
)
