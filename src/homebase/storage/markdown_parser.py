"""Markdown parsing and serialization for Homebase notes.

A note file is a ``---`` delimited YAML header, one blank line, then the
Markdown body. Decoding never fails: a missing or malformed header simply
means the whole text is body and the field map is empty, because the user's
Markdown must always open.
"""
import datetime
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml
from frontmatter.default_handlers import YAMLHandler

from homebase.config import config
from homebase.models.schema import (
    Note,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from homebase.storage.derived import derive_title, search_key

logger = logging.getLogger(__name__)

_BOM = "﻿"

# Opening delimiter, optional YAML, closing delimiter. The newline after the
# closing delimiter belongs to the header.
_FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(?:(?P<yaml>.*?)\r?\n)?---[ \t]*(?:\r?\n|\Z)", re.DOTALL
)
_TRAILING_NEWLINES_RE = re.compile(r"\n{3,}\Z")

_handler = YAMLHandler()


@dataclass
class ParsedNoteFile:
    """Loosely typed front matter plus the untouched body text."""

    frontmatter: Dict[str, Any] = field(default_factory=dict)
    body: str = ""


@dataclass
class NoteFields:
    """The front-matter fields the rest of the system relies on."""

    id: Optional[str]
    created: datetime.datetime
    modified: datetime.datetime
    projects: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    user_placed: bool = False


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith(_BOM) else text


def _load_yaml(yaml_text: str) -> Dict[str, Any]:
    try:
        loaded = _handler.load(yaml_text)
    except (yaml.YAMLError, ValueError) as e:
        # ValueError: date-shaped scalars that are not real dates (2026-02-30)
        logger.warning(f"Ignoring malformed front matter: {e}")
        return {}
    if not isinstance(loaded, dict):
        return {}
    return {str(k): v for k, v in loaded.items()}


def parse_note_file(content: Optional[str]) -> ParsedNoteFile:
    """Split a note file into its front-matter map and body.

    Args:
        content: Raw file text; a leading byte-order mark is ignored.

    Returns:
        ParsedNoteFile with an empty map when there is no usable header.
    """
    raw = _strip_bom(content or "")
    match = _FRONTMATTER_RE.match(raw)
    if not match:
        return ParsedNoteFile(frontmatter={}, body=raw)

    frontmatter = _load_yaml(match.group("yaml") or "")
    body = raw[match.end():]
    # Drop the single blank separator line written by render_note_file
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    return ParsedNoteFile(frontmatter=frontmatter, body=body)


def render_note_file(frontmatter: Optional[Dict[str, Any]], body: Optional[str]) -> str:
    """Serialize front matter and body into note file text.

    Always emits exactly one header and one blank line before the body.
    A trailing run of three or more newlines is collapsed to two.
    """
    yaml_text = _handler.export(dict(frontmatter or {}), sort_keys=False)
    text = f"---\n{yaml_text}\n---\n\n{body or ''}"
    return _TRAILING_NEWLINES_RE.sub("\n\n", text)


def _coerce_string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def extract_note_fields(frontmatter: Dict[str, Any]) -> NoteFields:
    """Pull typed essential fields out of a loosely typed front-matter map.

    Coercion is lenient: non-list project/topic values become empty lists,
    unusable timestamps become "now", and only a real boolean ``true`` marks
    a note as user-placed.
    """
    raw_id = frontmatter.get("id")
    note_id = raw_id.strip() if isinstance(raw_id, str) and raw_id.strip() else None

    now = utc_now()
    created = parse_timestamp(frontmatter.get("created")) or now
    modified = parse_timestamp(frontmatter.get("modified")) or now

    return NoteFields(
        id=note_id,
        created=created,
        modified=modified,
        projects=_coerce_string_list(frontmatter.get("projects")),
        topics=_coerce_string_list(frontmatter.get("topics")),
        user_placed=frontmatter.get("user_placed") is True,
    )


def essential_frontmatter(
    note_id: str,
    created: datetime.datetime,
    modified: datetime.datetime,
    projects: List[str],
    topics: List[str],
    user_placed: bool,
) -> Dict[str, Any]:
    """The fields every note file carries, in their canonical order."""
    return {
        "id": note_id,
        "created": format_timestamp(created),
        "modified": format_timestamp(modified),
        "projects": list(projects),
        "topics": list(topics),
        "user_placed": bool(user_placed),
    }


class MarkdownParser:
    """Converts between Note objects and note file text."""

    def __init__(self, title_max_length: Optional[int] = None):
        self.title_max_length = title_max_length or config.title_max_length

    def parse_note(self, relative_path: str, content: str) -> Optional[Note]:
        """Build a Note from file text.

        Args:
            relative_path: Location of the file relative to the vault root.
            content: Raw file text.

        Returns:
            The Note, or None when the front matter carries no id (such files
            are not managed by Homebase and are left alone).
        """
        parsed = parse_note_file(content)
        fields = extract_note_fields(parsed.frontmatter)
        if fields.id is None:
            logger.warning(f"Skipping {relative_path}: no id in front matter")
            return None

        title = derive_title(parsed.body, self.title_max_length)
        return Note(
            id=fields.id,
            relative_path=relative_path,
            title=title,
            created=fields.created,
            modified=fields.modified,
            projects=fields.projects,
            topics=fields.topics,
            user_placed=fields.user_placed,
            body=parsed.body,
            search_text=search_key(title, parsed.body),
            raw_frontmatter=parsed.frontmatter,
        )

    def build_frontmatter(self, note: Note) -> Dict[str, Any]:
        """Overlay the note's essential fields on its raw front matter.

        Keys written by other tools survive; the essential fields always
        reflect the in-memory note so file and store agree on the id.
        """
        merged = dict(note.raw_frontmatter)
        merged.update(
            essential_frontmatter(
                note.id,
                note.created,
                note.modified,
                note.projects,
                note.topics,
                note.user_placed,
            )
        )
        return merged

    def render_note(self, note: Note) -> str:
        """Convert a Note to note file text."""
        return render_note_file(self.build_frontmatter(note), note.body)
