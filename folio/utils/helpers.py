"""
Common utility functions and helpers.
"""
from typing import List, Optional
from urllib.parse import unquote, urlparse
import os
import re


def title_from_url(url: str) -> str:
    """
    Derive a human-readable title from a URL.

    Uses the last path segment without its extension, with dashes and
    underscores turned into spaces.  Falls back to the host name.

    Args:
        url: Absolute http(s) URL

    Returns:
        Title string (never empty for a valid URL)
    """
    parsed = urlparse(url)
    segments = [s for s in parsed.path.split("/") if s]
    if segments:
        stem, _ext = os.path.splitext(unquote(segments[-1]))
        stem = re.sub(r"[-_]+", " ", stem).strip()
        if stem:
            return stem
    return parsed.hostname or url


def format_file_size(size: Optional[int]) -> str:
    """
    Format a byte count as a short human-readable string.

    Args:
        size: Number of bytes

    Returns:
        e.g. "0 B", "512 B", "1.5 KB", "12.0 MB"
    """
    if not size:
        return "0 B"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def parse_tags(raw: Optional[str]) -> List[str]:
    """Split a comma separated tag string, dropping blanks and duplicates."""
    if not raw:
        return []
    seen: List[str] = []
    for tag in raw.split(","):
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix
