"""Utility functions for Homebase."""
import re

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Convert text into a lowercase, hyphen-separated slug.

    Only ASCII letters and digits survive; every other run of characters
    becomes a single hyphen, and leading/trailing hyphens are dropped.

    Examples:
        "Home Base" -> "home-base"
        "  Q3: Planning!  " -> "q3-planning"
        "日本語" -> ""

    Args:
        text: The text to slugify.

    Returns:
        The slug, possibly empty.
    """
    if not text:
        return ""
    return _NON_SLUG_RE.sub("-", text.strip().lower()).strip("-")


def file_slug(text: str, fallback: str = "note", max_length: int = 60) -> str:
    """Slug suitable for a file name, never empty.

    Args:
        text: Source text, usually a derived title.
        fallback: Used when the text has no ASCII letters or digits.
        max_length: Longest slug kept (cut on a hyphen boundary when possible).

    Returns:
        A non-empty slug.
    """
    slug = slugify(text)
    if len(slug) > max_length:
        slug = slug[:max_length].rsplit("-", 1)[0] or slug[:max_length]
    return slug.strip("-") or fallback
