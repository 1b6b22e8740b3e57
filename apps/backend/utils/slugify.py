"""URL-safe slug generation utilities."""

import re
import unicodedata


def slugify(text: str, max_length: int = 80) -> str:
    """Convert text to a URL-safe slug (lowercase, hyphens, no special chars).

    Args:
        text: Text to slugify (e.g. "Club Atlético Norte").
        max_length: Hard cap on the slug length.

    Returns:
        Slugified text (e.g. "club-atletico-norte"), or "club" when nothing survives.
    """
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^\w\s-]", "", text.lower().strip())
    text = re.sub(r"[\s_-]+", "-", text).strip("-")
    return text[:max_length].rstrip("-") or "club"


def with_suffix(slug: str, attempt: int) -> str:
    """Disambiguate a taken slug: "club", "club-2", "club-3", ..."""
    return slug if attempt <= 1 else f"{slug}-{attempt}"
