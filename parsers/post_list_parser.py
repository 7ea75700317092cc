"""
Parser for pasted post and image URL lists.

Post lists are one URL per line; image lists are "url" or
"url,caption" / "url<TAB>caption" per line. Blank lines are ignored and
lines starting with # are comments.
"""

from dataclasses import dataclass, field
from typing import Optional
import structlog

from utils.urls import is_valid_url, normalize_url

logger = structlog.get_logger(__name__)

# A first line equal to one of these is a column label, not a URL
LABEL_LINES = {"posts", "post", "urls", "url"}


@dataclass
class ParsedImageLine:
    """One image URL from a pasted list."""
    url: str
    caption: Optional[str] = None


@dataclass
class PostListParseResult:
    """URLs found in pasted text, plus the count of lines skipped."""
    urls: list[str] = field(default_factory=list)
    skipped: int = 0


@dataclass
class ImageListParseResult:
    items: list[ParsedImageLine] = field(default_factory=list)
    skipped: int = 0


def _lines(text: str) -> list[str]:
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


def parse_post_urls_from_text(text: str) -> PostListParseResult:
    """
    Parse post URLs from pasted text.

    - An optional label first line ("posts", "urls", ...) is ignored
    - Comments and invalid URLs are counted as skipped
    - Duplicates (by normalized URL) are dropped silently

    Args:
        text: Multi-line pasted text

    Returns:
        PostListParseResult in paste order
    """
    lines = _lines(text)
    if lines and lines[0].lower() in LABEL_LINES:
        lines = lines[1:]

    result = PostListParseResult()
    seen = set()
    for line in lines:
        if line.startswith("#") or not is_valid_url(line):
            result.skipped += 1
            continue
        key = normalize_url(line)
        if key in seen:
            continue
        seen.add(key)
        result.urls.append(line)

    logger.debug("post_urls_parsed", count=len(result.urls), skipped=result.skipped)
    return result


def parse_image_items_from_text(text: str) -> ImageListParseResult:
    """
    Parse image URLs with optional captions from pasted text.

    A tab separates the caption when present, otherwise the first comma.
    """
    result = ImageListParseResult()
    seen = set()
    for line in _lines(text):
        if line.startswith("#"):
            result.skipped += 1
            continue

        separator = "\t" if "\t" in line else ","
        url, _, caption = line.partition(separator)
        url = url.strip()
        caption = caption.strip() or None

        if not is_valid_url(url):
            result.skipped += 1
            continue
        key = normalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        result.items.append(ParsedImageLine(url=url, caption=caption))

    logger.debug("image_urls_parsed", count=len(result.items), skipped=result.skipped)
    return result
