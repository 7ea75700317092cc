"""
URL helpers for listing imports.

Used to validate pasted URLs and to detect duplicates.
"""

from typing import Optional
from urllib.parse import urlsplit


def is_valid_url(url: Optional[str]) -> bool:
    """
    Check that a string is an absolute http(s) URL.

    Args:
        url: Candidate URL

    Returns:
        True if the URL has an http/https scheme and a host
    """
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def normalize_url(url: str) -> str:
    """
    Normalize a URL for duplicate detection.

    - Lowercases the whole URL
    - Removes a trailing slash
    - Keeps query parameters

    "https://Site.test/Car/1/" and "https://site.test/car/1" compare equal.
    """
    normalized = url.strip().lower()
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized
