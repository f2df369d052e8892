"""Data models for Homebase notes, drafts, tasks and projects."""

import datetime
import uuid
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    Hand-written front matter often carries naive timestamps; those are
    assumed to be UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    """Leniently interpret a front-matter timestamp.

    Accepts ISO 8601 strings (including a trailing ``Z``) and the
    ``datetime``/``date`` objects PyYAML produces for unquoted timestamps.

    Returns:
        A timezone-aware datetime, or None when the value is unusable.
    """
    if isinstance(value, datetime.datetime):
        return ensure_timezone_aware(value)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return ensure_timezone_aware(datetime.datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def format_timestamp(value: datetime.datetime) -> str:
    """Render a timestamp the way it is stored in front matter."""
    return ensure_timezone_aware(value).isoformat()


def generate_id() -> str:
    """Generate an opaque, stable identifier for a note or task.

    Random UUID4 strings only use ``[0-9a-f-]``, so they are valid inside a
    ``#task:`` tag and survive YAML without quoting issues.
    """
    return str(uuid.uuid4())


def validate_relative_path(value: str) -> str:
    """Validate a vault-relative location such as ``notes/inbox/foo.md``.

    Args:
        value: The path to validate

    Returns:
        The validated path with trailing slashes removed

    Raises:
        ValueError: If the path is empty, absolute, or escapes the vault
    """
    if not value or not value.strip():
        raise ValueError("Relative path cannot be empty")

    if "\\" in value:
        raise ValueError("Relative path cannot contain backslashes")

    if value.startswith("/"):
        raise ValueError("Path must be relative")

    segments = value.rstrip("/").split("/")
    if any(seg == ".." for seg in segments):
        raise ValueError("Path must not contain '..'")

    if any(not seg for seg in segments):
        raise ValueError(
            "Relative path cannot have empty segments (no double slashes)"
        )

    return value.rstrip("/")


class NoteKind(str, Enum):
    """Grouping of a note, derived from where it lives in the vault."""

    INBOX = "inbox"
    DAILY = "daily"
    FOLDER = "folder"
    PROJECT = "project"
    ARCHIVE = "archive"
    OTHER = "other"


def kind_from_relative_path(relative_path: str) -> NoteKind:
    """Classify a note file location."""
    if relative_path.startswith("notes/inbox/"):
        return NoteKind.INBOX
    if relative_path.startswith("notes/daily/"):
        return NoteKind.DAILY
    if relative_path.startswith("notes/archive/"):
        return NoteKind.ARCHIVE
    if relative_path.startswith("notes/projects/"):
        return NoteKind.PROJECT
    if relative_path.startswith("notes/folders/"):
        return NoteKind.FOLDER
    return NoteKind.OTHER


def kind_from_target_dir(target_dir: str) -> NoteKind:
    """Classify the directory a draft will be created in."""
    if target_dir.startswith("notes/inbox"):
        return NoteKind.INBOX
    if target_dir.startswith("notes/daily"):
        return NoteKind.DAILY
    if target_dir.startswith("notes/projects"):
        return NoteKind.PROJECT
    if target_dir.startswith("notes/folders"):
        return NoteKind.FOLDER
    return NoteKind.OTHER


class TaskStatus(str, Enum):
    """Completion state of a task (exactly two states)."""

    TODO = "todo"
    DONE = "done"


class TaskPriority(str, Enum):
    """Priority ranks, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskRecurrence(str, Enum):
    """How often a recurring task comes back."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Task(BaseModel):
    """A task parsed from a tagged checkbox line of a note body."""

    id: str = Field(..., description="Identifier embedded as #task:<id>")
    title: str = Field(..., description="Line text with metadata tags stripped")
    status: TaskStatus = Field(default=TaskStatus.TODO)
    due: Optional[datetime.date] = Field(default=None)
    priority: Optional[TaskPriority] = Field(default=None)
    every: Optional[TaskRecurrence] = Field(default=None)
    order: Optional[int] = Field(default=None, ge=0)
    line: int = Field(default=0, description="0-based line index within the body")
    raw: str = Field(default="", description="The line as written")

    model_config = {"frozen": True}

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE


class Note(BaseModel):
    """A note persisted as a Markdown file in the vault."""

    id: str = Field(..., description="Stable identifier, stored in front matter")
    relative_path: str = Field(..., description="Location relative to the vault root")
    title: str = Field(default="", description="Derived from the body")
    created: datetime.datetime = Field(default_factory=utc_now)
    modified: datetime.datetime = Field(default_factory=utc_now)
    projects: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    user_placed: bool = Field(
        default=False,
        description="Location chosen explicitly by the user, not the inbox default",
    )
    body: str = Field(default="", description="Raw Markdown, authoritative")
    search_text: str = Field(default="")
    raw_frontmatter: Dict[str, Any] = Field(
        default_factory=dict, description="Front matter as read, unknown keys included"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Note ID cannot be empty")
        return v

    @field_validator("relative_path")
    @classmethod
    def validate_location(cls, v: str) -> str:
        return validate_relative_path(v)

    @property
    def kind(self) -> NoteKind:
        return kind_from_relative_path(self.relative_path)


class DraftNote(BaseModel):
    """A note that exists only in memory until its body becomes meaningful."""

    id: str = Field(default_factory=generate_id)
    target_dir: str = Field(default="notes/inbox")
    title: str = Field(default="")
    created: datetime.datetime = Field(default_factory=utc_now)
    modified: datetime.datetime = Field(default_factory=utc_now)
    projects: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    user_placed: bool = Field(default=False)
    body: str = Field(default="")
    is_persisting: bool = Field(
        default=False, description="A create call for this draft is in flight"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("target_dir")
    @classmethod
    def validate_target_dir(cls, v: str) -> str:
        return validate_relative_path(v)

    @property
    def kind(self) -> NoteKind:
        return kind_from_target_dir(self.target_dir)


class Project(BaseModel):
    """A project folder under ``notes/projects`` described by ``.project.json``."""

    id: str = Field(..., description="Unique project ID")
    name: str = Field(..., description="Human-readable display name")
    status: str = Field(default="active")
    created: Optional[str] = Field(default=None)
    modified: Optional[str] = Field(default=None)
    folder_relative_path: str = Field(...)

    @field_validator("folder_relative_path")
    @classmethod
    def validate_folder(cls, v: str) -> str:
        return validate_relative_path(v)


class CollectionType(str, Enum):
    """The views a UI can have active."""

    DAILY = "daily"
    TASKS = "tasks"
    INBOX = "inbox"
    ALL = "all"
    FOLDER = "folder"
    PROJECT = "project"
    ARCHIVE = "archive"
    SEARCH = "search"


class Collection(BaseModel):
    """The currently active view; decides where new drafts are created."""

    type: CollectionType = Field(default=CollectionType.DAILY)
    folder_relative_path: Optional[str] = Field(default=None)
    project_id: Optional[str] = Field(default=None)

    model_config = {"frozen": True}

    @classmethod
    def folder(cls, folder_relative_path: str) -> "Collection":
        return cls(
            type=CollectionType.FOLDER,
            folder_relative_path=validate_relative_path(folder_relative_path),
        )

    @classmethod
    def project(cls, project_id: str) -> "Collection":
        return cls(type=CollectionType.PROJECT, project_id=project_id)


TaskFieldValue = Union[datetime.date, TaskPriority, TaskRecurrence, int, str, None]
