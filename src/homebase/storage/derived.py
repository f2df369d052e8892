"""Fields derived from a note body: title, search key and meaningfulness."""
import re
import unicodedata

from homebase.storage.tasks import strip_metadata

TITLE_ELLIPSIS = "…"

# Leading block markers, removed in this order
_LEADING_MARKERS = (
    re.compile(r"^#+(?:\s+|$)"),  # heading
    re.compile(r"^>\s+"),  # quote
    re.compile(r"^[-*+]\s+\[[ xX]\]\s*"),  # checkbox
    re.compile(r"^[-*+]\s+"),  # bullet
    re.compile(r"^\d+\.\s+"),  # ordered list
)
_EMPHASIS_RE = re.compile(r"[`*_~]")
_WHITESPACE_RE = re.compile(r"\s+")


def clean_line(line: str) -> str:
    """Strip block markers, task tags and emphasis characters from a line."""
    out = line.lstrip()
    for pattern in _LEADING_MARKERS:
        out = pattern.sub("", out, count=1)
    out = strip_metadata(out)
    out = _EMPHASIS_RE.sub("", out)
    return out.strip()


def _has_content(text: str) -> bool:
    return any(
        not ch.isspace() and not unicodedata.category(ch).startswith("P")
        for ch in text
    )


def is_meaningful(body: str) -> bool:
    """Whether a body holds real text.

    Bare checkboxes, lone heading marks, whitespace and punctuation do not
    count. Used to gate the first write of a draft.
    """
    return any(_has_content(clean_line(line)) for line in (body or "").splitlines())


def derive_title(body: str, max_length: int = 80) -> str:
    """First meaningful cleaned line, truncated with an ellipsis."""
    for line in (body or "").splitlines():
        cleaned = clean_line(line)
        if not _has_content(cleaned):
            continue
        if len(cleaned) > max_length:
            return cleaned[:max_length].rstrip() + TITLE_ELLIPSIS
        return cleaned
    return ""


def normalize_for_search(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", (text or "").lower()).strip()


def search_key(title: str, body: str) -> str:
    """Normalized text a note is searched by."""
    return normalize_for_search(f"{title}\n{body}")
