"""Task micro-format: tagged checkbox lines inside note bodies.

A checkbox list item becomes a task once it carries an id tag::

    - [ ] Call Alex #task:abc123 @due(2026-01-22) @priority(high) @every(weekly) @order(2000)

Tags are whitespace-delimited tokens and must match their grammar in full,
so prose such as ``email@due(ish)`` or ``#tasks`` is never mistaken for
metadata. Checkboxes without an id tag are plain checklist items and every
operation here leaves them alone.

All body operations are pure string transformations. When the addressed task
does not exist (or nothing would change) the original body is returned as-is.
"""
import calendar
import datetime
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from homebase.exceptions import ErrorCode, TaskConversionError, ValidationError
from homebase.models.schema import (
    Project,
    Task,
    TaskFieldValue,
    TaskPriority,
    TaskRecurrence,
    TaskStatus,
    generate_id,
)
from homebase.utils import slugify

logger = logging.getLogger(__name__)

DEFAULT_TASK_TITLE = "New task"

# ---------------------------------------------------------------------------
# Grammar
# ---------------------------------------------------------------------------

# Checkbox list item. The text after the checkbox is optional so that a bare
# "- [ ]" can still be converted.
_LINE_RE = re.compile(
    r"^(?P<prefix>(?P<indent>\s*)(?P<bullet>[-*+])\s+\[(?P<mark>[ xX])\])"
    r"(?:(?P<sep>\s+)(?P<text>.*))?$"
)
_TOKEN_RE = re.compile(r"\S+")

# Canonical tag order: id, due, priority, recurrence, order
_TAG_PATTERNS: Dict[str, "re.Pattern[str]"] = {
    "id": re.compile(r"#task:([A-Za-z0-9_-]+)"),
    "due": re.compile(r"@due[(:](\d{4}-\d{2}-\d{2})\)?"),
    "priority": re.compile(r"@priority[(:](low|medium|high|urgent)\)?", re.IGNORECASE),
    "every": re.compile(r"@every[(:](daily|weekly|monthly)\)?", re.IGNORECASE),
    "order": re.compile(r"@order[(:](\d+)\)?"),
}
TAG_ORDER: Tuple[str, ...] = tuple(_TAG_PATTERNS)
UPDATABLE_FIELDS: Tuple[str, ...] = ("due", "priority", "every", "order")

_ID_RE = re.compile(r"[A-Za-z0-9_-]+")
_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _tag_kind(token: str) -> Optional[str]:
    for kind, pattern in _TAG_PATTERNS.items():
        if pattern.fullmatch(token):
            return kind
    return None


def _tag_value(token: str, kind: str) -> str:
    return _TAG_PATTERNS[kind].fullmatch(token).group(1)


def _first_tags(text: str) -> Dict[str, str]:
    """Map each tag kind to its first token in ``text``."""
    found: Dict[str, str] = {}
    for token in text.split():
        kind = _tag_kind(token)
        if kind is not None and kind not in found:
            found[kind] = token
    return found


def _parse_date(value: str) -> Optional[datetime.date]:
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        return None


def _format_tag(kind: str, value: TaskFieldValue) -> str:
    if kind == "id":
        return f"#task:{value}"
    if kind == "due":
        return f"@due({value.isoformat()})"
    if kind in ("priority", "every"):
        return f"@{kind}({value.value})"
    return f"@order({value})"


def _coerce_field(field: str, value: TaskFieldValue) -> TaskFieldValue:
    """Validate and normalize a task field value supplied by a caller."""
    if value is None:
        return None
    try:
        if field == "due":
            if isinstance(value, datetime.datetime):
                return value.date()
            if isinstance(value, datetime.date):
                return value
            if isinstance(value, str) and _DATE_RE.fullmatch(value.strip()):
                return datetime.date.fromisoformat(value.strip())
            raise ValueError("expected a date or YYYY-MM-DD string")
        if field == "priority":
            return TaskPriority(value.lower() if isinstance(value, str) else value)
        if field == "every":
            return TaskRecurrence(value.lower() if isinstance(value, str) else value)
        if field == "order":
            if isinstance(value, bool):
                raise ValueError("order must be an integer")
            order = int(value)
            if order < 0:
                raise ValueError("order must be >= 0")
            return order
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"Invalid value for task field '{field}': {e}",
            field=field,
            value=value,
            code=ErrorCode.TASK_FIELD_INVALID,
        ) from e
    raise ValidationError(
        f"Unknown task field '{field}'",
        field=field,
        code=ErrorCode.TASK_FIELD_INVALID,
    )


def _validate_id(task_id: str) -> str:
    if not task_id or not _ID_RE.fullmatch(task_id):
        raise ValidationError(
            "Task ID may only contain letters, digits, '_' and '-'",
            field="id",
            value=task_id,
            code=ErrorCode.TASK_FIELD_INVALID,
        )
    return task_id


# ---------------------------------------------------------------------------
# Line helpers
# ---------------------------------------------------------------------------


def _split_eol(line: str) -> Tuple[str, str]:
    if line.endswith("\r"):
        return line[:-1], "\r"
    return line, ""


def _line_task_id(match: "re.Match[str]") -> Optional[str]:
    token = _first_tags(match.group("text") or "").get("id")
    return _tag_value(token, "id") if token else None


def _join_line(match: "re.Match[str]", text: str, prefix: Optional[str] = None) -> str:
    return (prefix or match.group("prefix")) + (match.group("sep") or " ") + text


def _set_tag(text: str, kind: str, rendered: str) -> str:
    """Replace the first ``kind`` tag, or insert it at its canonical position."""
    tokens = list(_TOKEN_RE.finditer(text))
    for token in tokens:
        if _tag_kind(token.group()) == kind:
            return text[: token.start()] + rendered + text[token.end():]

    rank = TAG_ORDER.index(kind)
    for token in tokens:
        other = _tag_kind(token.group())
        if other is not None and TAG_ORDER.index(other) > rank:
            return text[: token.start()] + rendered + " " + text[token.start():]

    stripped = text.rstrip()
    return f"{stripped} {rendered}" if stripped else rendered


def _remove_tag(text: str, kind: str) -> str:
    """Remove every ``kind`` tag together with the whitespace that preceded it."""
    tokens = [t for t in _TOKEN_RE.finditer(text) if _tag_kind(t.group()) == kind]
    for token in reversed(tokens):
        before, after = text[: token.start()], text[token.end():]
        if before.strip():
            before = before.rstrip()
        else:
            after = after.lstrip()
        text = before + after
    return text


def _edit_task_line(
    body: str, task_id: str, edit: Callable[["re.Match[str]", str], str]
) -> str:
    """Apply ``edit`` to the first task line carrying ``task_id``."""
    if not body or f"#task:{task_id}" not in body:
        return body
    lines = body.split("\n")
    for index, line in enumerate(lines):
        content, eol = _split_eol(line)
        match = _LINE_RE.match(content)
        if not match or _line_task_id(match) != task_id:
            continue
        updated = edit(match, content)
        if updated == content:
            return body
        lines[index] = updated + eol
        return "\n".join(lines)
    return body


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def strip_metadata(text: str) -> str:
    """Remove every task tag from ``text`` and collapse whitespace.

    Idempotent: ``strip_metadata(strip_metadata(x)) == strip_metadata(x)``.
    """
    return " ".join(t for t in (text or "").split() if _tag_kind(t) is None)


def parse_tasks(body: str) -> List[Task]:
    """Return the tasks in ``body`` in line order.

    Checkbox lines without an id tag are skipped, as is everything that is
    not a checkbox list item. Malformed tag values degrade to ``None``.
    """
    tasks: List[Task] = []
    for index, line in enumerate((body or "").split("\n")):
        content, _ = _split_eol(line)
        match = _LINE_RE.match(content)
        if not match:
            continue
        text = match.group("text") or ""
        tags = _first_tags(text)
        if "id" not in tags:
            continue

        values = {kind: _tag_value(token, kind) for kind, token in tags.items()}
        tasks.append(
            Task(
                id=values["id"],
                title=strip_metadata(text),
                status=TaskStatus.DONE if match.group("mark") in "xX" else TaskStatus.TODO,
                due=_parse_date(values["due"]) if "due" in values else None,
                priority=TaskPriority(values["priority"].lower()) if "priority" in values else None,
                every=TaskRecurrence(values["every"].lower()) if "every" in values else None,
                order=int(values["order"]) if "order" in values else None,
                line=index,
                raw=content,
            )
        )
    return tasks


def find_task(body: str, task_id: str) -> Optional[Task]:
    """Return the first task carrying ``task_id``, if any."""
    for task in parse_tasks(body):
        if task.id == task_id:
            return task
    return None


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def build_line(
    title: str,
    id: Optional[str] = None,
    due: TaskFieldValue = None,
    priority: TaskFieldValue = None,
    every: TaskFieldValue = None,
    order: TaskFieldValue = None,
    done: bool = False,
) -> Tuple[str, str]:
    """Build a canonical task line.

    Args:
        title: Task title; tags inside it are stripped, empty becomes "New task".
        id: Task id; a fresh one is generated when omitted.
        due, priority, every, order: Optional metadata.
        done: Whether the checkbox is ticked.

    Returns:
        Tuple of (task id, line).
    """
    task_id = _validate_id(id) if id is not None else generate_id()
    safe_title = strip_metadata(title) or DEFAULT_TASK_TITLE
    parts = [f"- [{'x' if done else ' '}] {safe_title}", _format_tag("id", task_id)]
    for field, value in (("due", due), ("priority", priority), ("every", every), ("order", order)):
        coerced = _coerce_field(field, value)
        if coerced is not None:
            parts.append(_format_tag(field, coerced))
    return task_id, " ".join(parts)


def convert_checkbox(line: str) -> Tuple[str, str]:
    """Promote a plain checkbox line to a task.

    Returns:
        Tuple of (new task id, converted line).

    Raises:
        TaskConversionError: If the line is not a checkbox, or already a task.
    """
    content, eol = _split_eol(line)
    match = _LINE_RE.match(content)
    if not match:
        raise TaskConversionError("Line is not a checkbox list item", line=line)
    if _line_task_id(match) is not None:
        raise TaskConversionError(
            "Checkbox is already a task",
            line=line,
            code=ErrorCode.TASK_ALREADY_CONVERTED,
        )

    text = (match.group("text") or "").rstrip()
    if not strip_metadata(text):
        text = f"{DEFAULT_TASK_TITLE} {text.strip()}".rstrip()
    task_id = generate_id()
    converted = _join_line(match, _set_tag(text, "id", _format_tag("id", task_id)))
    return task_id, converted + eol


def convert_checkbox_in_body(body: str, line_index: int) -> Tuple[str, str]:
    """Convert the checkbox at ``line_index`` (0-based) of ``body``.

    Returns:
        Tuple of (new task id, updated body).
    """
    lines = (body or "").split("\n")
    if line_index < 0 or line_index >= len(lines):
        raise ValidationError(
            f"Line {line_index} is outside the body",
            field="line_index",
            value=line_index,
        )
    task_id, lines[line_index] = convert_checkbox(lines[line_index])
    return task_id, "\n".join(lines)


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


def update_field(body: str, task_id: str, field: str, value: TaskFieldValue) -> str:
    """Set, replace or remove one metadata tag on a task line.

    An existing tag is replaced in place. A missing tag is inserted at its
    canonical position among the tags already present. ``None`` removes the
    tag. The id tag cannot be changed here.

    Raises:
        ValidationError: For an unknown field or an invalid value.
    """
    if field not in UPDATABLE_FIELDS:
        raise ValidationError(
            f"Task field '{field}' cannot be updated",
            field=field,
            code=ErrorCode.TASK_FIELD_INVALID,
        )
    coerced = _coerce_field(field, value)

    def edit(match: "re.Match[str]", content: str) -> str:
        text = match.group("text") or ""
        if coerced is None:
            new_text = _remove_tag(text, field)
        else:
            new_text = _set_tag(text, field, _format_tag(field, coerced))
        if new_text == text:
            return content
        return _join_line(match, new_text)

    return _edit_task_line(body, task_id, edit)


def update_metadata(body: str, task_id: str, **patch: TaskFieldValue) -> str:
    """Apply several :func:`update_field` changes to one task."""
    for field in patch:
        if field not in UPDATABLE_FIELDS:
            raise ValidationError(
                f"Task field '{field}' cannot be updated",
                field=field,
                code=ErrorCode.TASK_FIELD_INVALID,
            )
    updated = body
    for field, value in patch.items():
        updated = update_field(updated, task_id, field, value)
    return updated


def update_status(body: str, task_id: str, status: TaskStatus) -> str:
    """Tick or untick a task's checkbox without touching anything else."""
    done = TaskStatus(status) == TaskStatus.DONE

    def edit(match: "re.Match[str]", content: str) -> str:
        if (match.group("mark") in "xX") == done:
            return content
        prefix = match.group("prefix")
        new_prefix = prefix[:-2] + ("x" if done else " ") + "]"
        return new_prefix + content[len(prefix):]

    return _edit_task_line(body, task_id, edit)


def update_title(body: str, task_id: str, title: str) -> str:
    """Replace a task's title, keeping its checkbox state and every tag.

    Tags are re-emitted after the new title in canonical order.
    """
    new_title = strip_metadata(title) or DEFAULT_TASK_TITLE

    def edit(match: "re.Match[str]", content: str) -> str:
        tags = _first_tags(match.group("text") or "")
        ordered = [tags[kind] for kind in TAG_ORDER if kind in tags]
        return _join_line(match, " ".join([new_title] + ordered))

    return _edit_task_line(body, task_id, edit)


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------


def add_months(value: datetime.date, months: int) -> datetime.date:
    """Calendar month arithmetic, clamping the day to the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return datetime.date(year, month, day)


def advance_due(base: datetime.date, every: TaskRecurrence) -> datetime.date:
    """Move a due date forward by one recurrence period."""
    every = TaskRecurrence(every)
    if every == TaskRecurrence.DAILY:
        return base + datetime.timedelta(days=1)
    if every == TaskRecurrence.WEEKLY:
        return base + datetime.timedelta(days=7)
    return add_months(base, 1)


def toggle_status(
    body: str,
    task_id: str,
    status: TaskStatus,
    today: Optional[datetime.date] = None,
) -> str:
    """Set a task's status, rescheduling recurring tasks instead of closing them.

    Completing a task with a recurrence advances its due date (or today, when
    it has none) by one period and leaves it open.
    """
    status = TaskStatus(status)
    task = find_task(body, task_id)
    if task is None:
        return body
    if status == TaskStatus.TODO or task.every is None:
        return update_status(body, task_id, status)

    base = task.due or today or datetime.date.today()
    next_due = advance_due(base, task.every)
    logger.debug(f"Recurring task {task_id} rescheduled to {next_due.isoformat()}")
    updated = update_field(body, task_id, "due", next_due)
    return update_status(updated, task_id, TaskStatus.TODO)


# ---------------------------------------------------------------------------
# Quick-add input
# ---------------------------------------------------------------------------


@dataclass
class TaskInput:
    """Result of parsing a quick-add line such as ``Pay rent tomorrow p1``."""

    title: str
    due: Optional[datetime.date] = None
    priority: Optional[TaskPriority] = None
    every: Optional[TaskRecurrence] = None
    project_id: Optional[str] = None


_DUE_PHRASES: List[Tuple["re.Pattern[str]", Callable[["re.Match[str]", datetime.date], datetime.date]]] = [
    (re.compile(r"\btoday\b", re.IGNORECASE), lambda m, d: d),
    (re.compile(r"\btomorrow\b", re.IGNORECASE), lambda m, d: d + datetime.timedelta(days=1)),
    (re.compile(r"\bnext week\b", re.IGNORECASE), lambda m, d: d + datetime.timedelta(days=7)),
    (re.compile(r"\bnext month\b", re.IGNORECASE), lambda m, d: add_months(d, 1)),
    (re.compile(r"\bin (\d+) days?\b", re.IGNORECASE), lambda m, d: d + datetime.timedelta(days=int(m.group(1)))),
    (re.compile(r"\bin (\d+) weeks?\b", re.IGNORECASE), lambda m, d: d + datetime.timedelta(weeks=int(m.group(1)))),
]
_PRIORITY_RE = re.compile(r"\bp([1-4])\b", re.IGNORECASE)
_PRIORITY_CODES = {
    "1": TaskPriority.URGENT,
    "2": TaskPriority.HIGH,
    "3": TaskPriority.MEDIUM,
    "4": TaskPriority.LOW,
}
_EVERY_RE = re.compile(r"\bevery (day|week|month)\b", re.IGNORECASE)
_EVERY_WORD_RE = re.compile(r"\b(daily|weekly|monthly)\b", re.IGNORECASE)
_EVERY_UNITS = {
    "day": TaskRecurrence.DAILY,
    "week": TaskRecurrence.WEEKLY,
    "month": TaskRecurrence.MONTHLY,
}
_PROJECT_TOKEN_RE = re.compile(r"#([\w-]+)")


def _remove_span(text: str, match: "re.Match[str]") -> str:
    return text[: match.start()] + " " + text[match.end():]


def parse_task_input(
    text: str,
    projects: Iterable[Project] = (),
    today: Optional[datetime.date] = None,
) -> TaskInput:
    """Parse natural-language shortcuts out of a quick-add line.

    Recognizes one due phrase (today, tomorrow, next week, next month,
    in N days, in N weeks), a priority code ``p1``-``p4``, a recurrence
    (``every day|week|month`` or daily/weekly/monthly) and a ``#slug`` naming
    a project. Whatever is left is the title.
    """
    remaining = (text or "").strip()
    if not remaining:
        return TaskInput(title="")
    today = today or datetime.date.today()
    result = TaskInput(title="")

    for pattern, resolve in _DUE_PHRASES:
        match = pattern.search(remaining)
        if match:
            result.due = resolve(match, today)
            remaining = _remove_span(remaining, match)
            break

    match = _PRIORITY_RE.search(remaining)
    if match:
        result.priority = _PRIORITY_CODES[match.group(1)]
        remaining = _remove_span(remaining, match)

    match = _EVERY_RE.search(remaining)
    if match:
        result.every = _EVERY_UNITS[match.group(1).lower()]
        remaining = _remove_span(remaining, match)
    else:
        match = _EVERY_WORD_RE.search(remaining)
        if match:
            result.every = TaskRecurrence(match.group(1).lower())
            remaining = _remove_span(remaining, match)

    by_slug = {slugify(p.name): p for p in projects}
    for match in _PROJECT_TOKEN_RE.finditer(remaining):
        project = by_slug.get(match.group(1).lower())
        if project is not None:
            result.project_id = project.id
            remaining = _remove_span(remaining, match)
            break

    result.title = " ".join(remaining.split())
    return result
