"""The note store: in-memory notes, the draft slot, and write-through to the vault.

One ``NoteStore`` owns all state. UI code reads notes, tasks and the draft
from it and funnels every mutation through its methods. Memory is always
updated first; vault writes follow and their failures are surfaced through
``last_error`` without rolling anything back.

Draft lifecycle::

    NO_DRAFT --create_note--> DRAFT_EDITING --meaningful body--> DRAFT_PERSISTING
        ^                                                            |
        |                     create failed: back to DRAFT_EDITING   |
        +------------------- create succeeded: PERSISTED <-----------+

At most one create call is issued per draft. Edits made while it is in flight
stay in memory and are written by a single trailing write.
"""

import asyncio
import datetime
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from homebase.config import INBOX_DIR, config
from homebase.exceptions import (
    ErrorCode,
    HomebaseError,
    NoteNotFoundError,
    ValidationError,
)
from homebase.models.schema import (
    Collection,
    CollectionType,
    DraftNote,
    Note,
    NoteKind,
    Project,
    Task,
    TaskFieldValue,
    TaskPriority,
    TaskRecurrence,
    TaskStatus,
    generate_id,
    utc_now,
)
from homebase.observability import _sanitize_error_message, timed_operation
from homebase.services.debounce import WriteDebouncer
from homebase.storage import tasks as task_codec
from homebase.storage.derived import (
    derive_title,
    is_meaningful,
    normalize_for_search,
    search_key,
)
from homebase.storage.markdown_parser import (
    MarkdownParser,
    essential_frontmatter,
    render_note_file,
)
from homebase.storage.vault import Vault, daily_note_path

logger = logging.getLogger(__name__)

_DATE_KEY_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


class DraftState(str, Enum):
    """Where an entity is in the draft persistence lifecycle."""

    NO_DRAFT = "no_draft"
    DRAFT_EDITING = "draft_editing"
    DRAFT_PERSISTING = "draft_persisting"
    PERSISTED = "persisted"


@dataclass(frozen=True)
class NoteTask:
    """A task together with the note that owns it."""

    note_id: str
    task: Task


def _next_modified(previous: datetime.datetime) -> datetime.datetime:
    """Current time, but never earlier than (or equal to) ``previous``."""
    now = utc_now()
    if now <= previous:
        return previous + datetime.timedelta(microseconds=1)
    return now


class NoteStore:
    """Canonical in-memory state for notes, the draft and projects."""

    def __init__(
        self,
        vault: Vault,
        parser: Optional[MarkdownParser] = None,
        save_debounce_seconds: Optional[float] = None,
        default_target_dir: Optional[str] = None,
    ):
        self.vault = vault
        self.parser = parser or MarkdownParser()
        self.default_target_dir = default_target_dir or config.default_target_dir

        self._notes: List[Note] = []
        self._projects: List[Project] = []
        self._folders: List[str] = []
        self._draft: Optional[DraftNote] = None
        self._selected_id: Optional[str] = None
        self._collection = Collection()
        self._search_query = ""
        self._last_error: Optional[str] = None

        delay = (
            save_debounce_seconds
            if save_debounce_seconds is not None
            else config.save_debounce_seconds
        )
        self._debouncer = WriteDebouncer(self._flush_edit, delay=delay)
        self._writers: Dict[str, "asyncio.Task[bool]"] = {}
        self._dirty: Set[str] = set()
        self._background: Set["asyncio.Future"] = set()

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def notes(self) -> List[Note]:
        """Persisted notes, newest-modified first."""
        return list(self._notes)

    @property
    def projects(self) -> List[Project]:
        return list(self._projects)

    @property
    def folders(self) -> List[str]:
        """Folder locations under ``notes/folders``, sorted."""
        return list(self._folders)

    @property
    def draft(self) -> Optional[DraftNote]:
        return self._draft

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def collection(self) -> Collection:
        return self._collection

    @property
    def search_query(self) -> str:
        return self._search_query

    @property
    def last_error(self) -> Optional[str]:
        """Most recent surfaced error message, until ``clear_error``."""
        return self._last_error

    def clear_error(self) -> None:
        self._last_error = None

    @property
    def draft_state(self) -> DraftState:
        """State of the draft slot."""
        if self._draft is None:
            return DraftState.NO_DRAFT
        if self._draft.is_persisting:
            return DraftState.DRAFT_PERSISTING
        return DraftState.DRAFT_EDITING

    def entity_state(self, entity_id: str) -> DraftState:
        """Lifecycle state of a draft or note by id."""
        if self._draft is not None and self._draft.id == entity_id:
            return self.draft_state
        if self.get_note(entity_id) is not None:
            return DraftState.PERSISTED
        return DraftState.NO_DRAFT

    def get_note(self, note_id: str) -> Optional[Note]:
        for note in self._notes:
            if note.id == note_id:
                return note
        return None

    def require_note(self, note_id: str) -> Note:
        """Like ``get_note`` but raises NoteNotFoundError for unknown ids."""
        note = self.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def get_project(self, project_id: str) -> Optional[Project]:
        for project in self._projects:
            if project.id == project_id:
                return project
        return None

    def _find_by_path(self, relative_path: str) -> Optional[Note]:
        for note in self._notes:
            if note.relative_path == relative_path:
                return note
        return None

    def _replace_note(self, note: Note) -> None:
        self._notes = [note if n.id == note.id else n for n in self._notes]

    def _sort_notes(self) -> None:
        self._notes.sort(key=lambda n: n.modified, reverse=True)

    # =========================================================================
    # Errors and background work
    # =========================================================================

    def _surface_error(self, operation: str, error: Exception) -> None:
        message = error.message if isinstance(error, HomebaseError) else str(error)
        self._last_error = _sanitize_error_message(message)
        logger.error(f"{operation} failed: {error}")

    def _track(self, future: "asyncio.Future") -> None:
        self._background.add(future)
        future.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait until every in-flight create and write has finished."""
        while True:
            await self._debouncer.drain()
            running = [f for f in self._background if not f.done()]
            if not running:
                return
            await asyncio.gather(*running)

    async def flush(self, entity_id: Optional[str] = None) -> None:
        """Write pending debounced edits now and wait for all writes."""
        await self._debouncer.flush(entity_id)
        await self.drain()

    async def close(self) -> None:
        """Flush pending edits before shutting down."""
        await self._debouncer.shutdown()
        await self.drain()

    # =========================================================================
    # Loading
    # =========================================================================

    async def _read_entry(self, relative_path: str) -> Optional[Note]:
        try:
            content = await self.vault.read_note(relative_path)
        except HomebaseError as e:
            logger.warning(f"Skipping unreadable note {relative_path}: {e}")
            return None
        return self.parser.parse_note(relative_path, content)

    async def load(self) -> bool:
        """Enumerate, read and parse every note and load projects and folders.

        Files without an id in their front matter are skipped. Returns False
        (and surfaces the error) when the vault cannot be listed.
        """
        try:
            with timed_operation("vault.list_notes") as op:
                entries = await self.vault.list_notes(include_archived=True)
                op["result_count"] = len(entries)
            with timed_operation("vault.list_projects"):
                projects = await self.vault.list_projects()
            with timed_operation("vault.list_folders"):
                folders = await self.vault.list_folders()
        except HomebaseError as e:
            self._surface_error("load", e)
            return False

        parsed = await asyncio.gather(*(self._read_entry(e.relative_path) for e in entries))

        notes: List[Note] = []
        seen: Set[str] = set()
        for note in parsed:
            if note is None:
                continue
            if note.id in seen:
                logger.warning(
                    f"Duplicate note id {note.id} in {note.relative_path}; keeping the first copy"
                )
                continue
            seen.add(note.id)
            notes.append(note)

        self._notes = notes
        self._sort_notes()
        self._projects = projects
        self._folders = folders
        logger.info(f"Loaded {len(notes)} notes and {len(projects)} projects")

        draft_selected = self._draft is not None and self._selected_id == self._draft.id
        if not draft_selected and (
            self._selected_id is None or self.get_note(self._selected_id) is None
        ):
            self._selected_id = self._notes[0].id if self._notes else None
        return True

    async def refresh(self) -> bool:
        """Reload everything from the vault."""
        return await self.load()

    # =========================================================================
    # Collections and selection
    # =========================================================================

    def set_collection(self, collection: Collection) -> None:
        self._collection = collection

    def set_search_query(self, value: str) -> None:
        """Set the search text; a non-empty query switches to the search view."""
        query = (value or "").lstrip()
        self._search_query = query
        if query:
            self._collection = Collection(type=CollectionType.SEARCH)
        elif self._collection.type == CollectionType.SEARCH:
            self._collection = Collection()

    def target_dir_for(self, collection: Optional[Collection] = None) -> str:
        """Directory a new note created in ``collection`` lands in."""
        collection = collection or self._collection
        if collection.type == CollectionType.FOLDER and collection.folder_relative_path:
            return collection.folder_relative_path
        if collection.type == CollectionType.PROJECT and collection.project_id:
            project = self.get_project(collection.project_id)
            if project is not None:
                return project.folder_relative_path
        return self.default_target_dir

    def _apply_pending_draft_edit(self) -> Optional[DraftNote]:
        """Move a debounced draft edit into the draft now; returns the draft."""
        draft = self._draft
        if draft is None:
            return None
        pending = self._debouncer.pending_value(draft.id)
        if pending is not None:
            self._debouncer.cancel(draft.id)
            self.save_draft_body(pending)
        return self._draft

    def select_note(self, note_id: Optional[str]) -> None:
        """Change the selection, discarding an empty draft being left behind.

        A debounced edit still waiting for the draft is applied first, so
        text typed just before leaving is persisted rather than dropped.
        """
        draft = self._draft
        if (
            draft is not None
            and self._selected_id == draft.id
            and note_id != draft.id
            and not draft.is_persisting
        ):
            draft = self._apply_pending_draft_edit()
            if not draft.is_persisting and not is_meaningful(draft.body):
                self._draft = None
        self._selected_id = note_id

    # =========================================================================
    # Drafts
    # =========================================================================

    def create_note(self, collection: Optional[Collection] = None) -> str:
        """Start a new note and return its id.

        While a draft exists its id is returned instead of starting another
        one. A draft that is still empty is moved to the directory of the
        requested collection; a meaningful or persisting draft is left as is.
        """
        target_dir = self.target_dir_for(collection)
        existing = self._draft
        if existing is not None and not existing.is_persisting:
            existing = self._apply_pending_draft_edit()
        if existing is not None:
            if not existing.is_persisting and not is_meaningful(existing.body):
                self._draft = existing.model_copy(
                    update={
                        "target_dir": target_dir,
                        "user_placed": not target_dir.startswith(INBOX_DIR),
                    }
                )
            self._selected_id = existing.id
            return existing.id

        now = utc_now()
        draft = DraftNote(
            target_dir=target_dir,
            created=now,
            modified=now,
            user_placed=not target_dir.startswith(INBOX_DIR),
        )
        self._draft = draft
        self._selected_id = draft.id
        self._search_query = ""
        logger.debug(f"Started draft {draft.id} in {target_dir}")
        return draft.id

    def save_draft_body(self, body: str) -> bool:
        """Update the draft body; persist it once it becomes meaningful.

        Memory is updated immediately. The first time the body is meaningful
        and no create is in flight, one create call is started in the
        background. Must be called from a running event loop.

        Returns:
            False when there is no draft, True otherwise.
        """
        draft = self._draft
        if draft is None:
            return False

        updated = draft.model_copy(
            update={
                "body": body,
                "modified": _next_modified(draft.modified),
                "title": derive_title(body, self.parser.title_max_length),
            }
        )
        if is_meaningful(body) and not updated.is_persisting:
            updated = updated.model_copy(update={"is_persisting": True})
            self._draft = updated
            self._track(asyncio.ensure_future(self._persist_draft(updated)))
        else:
            self._draft = updated
        return True

    async def _persist_draft(self, draft: DraftNote) -> None:
        frontmatter = essential_frontmatter(
            draft.id,
            draft.created,
            draft.modified,
            draft.projects,
            draft.topics,
            draft.user_placed,
        )
        contents = render_note_file(frontmatter, draft.body)
        try:
            with timed_operation("vault.create_note", note_id=draft.id):
                relative_path = await self.vault.create_note_from_markdown(
                    draft.id, draft.target_dir, draft.title, contents
                )
        except HomebaseError as e:
            self._surface_error("create_note", e)
            current = self._draft
            if current is not None and current.id == draft.id:
                self._draft = current.model_copy(update={"is_persisting": False})
            return

        current = self._draft
        latest = current if current is not None and current.id == draft.id else draft
        title = derive_title(latest.body, self.parser.title_max_length)
        note = Note(
            id=latest.id,
            relative_path=relative_path,
            title=title,
            created=latest.created,
            modified=latest.modified,
            projects=latest.projects,
            topics=latest.topics,
            user_placed=latest.user_placed,
            body=latest.body,
            search_text=search_key(title, latest.body),
            raw_frontmatter=essential_frontmatter(
                latest.id,
                latest.created,
                latest.modified,
                latest.projects,
                latest.topics,
                latest.user_placed,
            ),
        )
        # Registered before the trailing write so later edits reach the note
        self._notes.insert(0, note)
        if current is not None and current.id == draft.id:
            self._draft = None
        logger.info(f"Persisted draft {note.id} as {relative_path}")
        await self._schedule_write(note.id)

    # =========================================================================
    # Write-through
    # =========================================================================

    async def _write_once(self, note: Note) -> bool:
        contents = self.parser.render_note(note)
        try:
            with timed_operation("vault.write_note", note_id=note.id):
                await self.vault.write_note(note.relative_path, contents)
        except HomebaseError as e:
            self._surface_error("write_note", e)
            return False
        return True

    async def _write_loop(self, note_id: str) -> bool:
        ok = False
        try:
            while True:
                self._dirty.discard(note_id)
                note = self.get_note(note_id)
                if note is None:
                    return False
                ok = await self._write_once(note)
                if note_id not in self._dirty:
                    return ok
        finally:
            if self._writers.get(note_id) is asyncio.current_task():
                del self._writers[note_id]

    def _schedule_write(self, note_id: str) -> "asyncio.Task[bool]":
        """Write the note's latest snapshot; one writer per note at a time.

        If a write is already running, the note is marked dirty and the
        running writer writes once more with whatever is in memory then.
        """
        writer = self._writers.get(note_id)
        if writer is not None and not writer.done():
            self._dirty.add(note_id)
            return writer
        writer = asyncio.ensure_future(self._write_loop(note_id))
        self._writers[note_id] = writer
        self._track(writer)
        return writer

    async def _settle(self, note_id: str) -> None:
        """Flush pending edits for a note and wait for its writer."""
        await self._debouncer.flush(note_id)
        writer = self._writers.get(note_id)
        if writer is not None:
            await asyncio.shield(writer)

    # =========================================================================
    # Note edits
    # =========================================================================

    async def save_note_body(self, note_id: str, body: str) -> bool:
        """Replace a note's body and write the re-encoded file.

        Returns:
            False for an unknown note or a failed write (memory keeps the
            new body either way).
        """
        note = self.get_note(note_id)
        if note is None:
            return False
        title = derive_title(body, self.parser.title_max_length)
        self._replace_note(
            note.model_copy(
                update={
                    "body": body,
                    "title": title,
                    "search_text": search_key(title, body),
                    "modified": _next_modified(note.modified),
                }
            )
        )
        self._sort_notes()
        return await self._schedule_write(note_id)

    async def update_note_meta(
        self,
        note_id: str,
        projects: Optional[List[str]] = None,
        topics: Optional[List[str]] = None,
        user_placed: Optional[bool] = None,
    ) -> bool:
        """Change a note's projects, topics or placement flag and write it."""
        note = self.get_note(note_id)
        if note is None:
            return False
        update = {"modified": _next_modified(note.modified)}
        if projects is not None:
            update["projects"] = list(projects)
        if topics is not None:
            update["topics"] = list(topics)
        if user_placed is not None:
            update["user_placed"] = bool(user_placed)
        self._replace_note(note.model_copy(update=update))
        self._sort_notes()
        return await self._schedule_write(note_id)

    def edit_body(self, entity_id: str, body: str) -> None:
        """Debounced body edit for a draft or note.

        Rapid calls for the same entity are coalesced and only the last body
        is saved once the quiet period elapses.
        """
        self._debouncer.signal(entity_id, body)

    async def _flush_edit(self, entity_id: str, body: str) -> bool:
        if self._draft is not None and self._draft.id == entity_id:
            return self.save_draft_body(body)
        if self.get_note(entity_id) is not None:
            return await self.save_note_body(entity_id, body)
        logger.warning(f"Dropping edit for unknown entity {entity_id}")
        return False

    async def archive_note(self, note_id: str) -> bool:
        """Move a note under ``notes/archive``."""
        note = self.get_note(note_id)
        if note is None:
            return False
        await self._settle(note_id)
        try:
            with timed_operation("vault.archive_note", note_id=note_id):
                new_path = await self.vault.archive_note(note.relative_path)
        except HomebaseError as e:
            self._surface_error("archive_note", e)
            return False

        current = self.get_note(note_id) or note
        self._replace_note(current.model_copy(update={"relative_path": new_path}))
        if self._selected_id == note_id:
            remaining = [
                n for n in self._notes if n.id != note_id and n.kind != NoteKind.ARCHIVE
            ]
            self._selected_id = remaining[0].id if remaining else None
        return True

    async def move_note(self, note_id: str, target_dir: str) -> bool:
        """Move a note to another directory.

        Leaving the inbox marks the note as user-placed (and moving back
        clears it); the front matter is rewritten when the flag changes.
        """
        note = self.get_note(note_id)
        if note is None:
            return False
        await self._settle(note_id)
        try:
            with timed_operation("vault.move_note", note_id=note_id, target_dir=target_dir):
                new_path = await self.vault.move_note(note.relative_path, target_dir)
        except HomebaseError as e:
            self._surface_error("move_note", e)
            return False

        user_placed = not new_path.startswith(INBOX_DIR + "/")
        current = self.get_note(note_id) or note
        self._replace_note(current.model_copy(update={"relative_path": new_path}))
        if user_placed != current.user_placed:
            return await self.update_note_meta(note_id, user_placed=user_placed)
        return True

    async def save_daily_body(self, date_key: str, body: str) -> bool:
        """Save the daily note for ``date_key`` (``YYYY-MM-DD``).

        The file is only created once the body is meaningful.

        Returns:
            True when the body was written, False otherwise.
        """
        if not _DATE_KEY_RE.fullmatch(date_key or ""):
            raise ValidationError(
                "Daily note date must be YYYY-MM-DD", field="date_key", value=date_key
            )
        relative_path = daily_note_path(date_key)
        existing = self._find_by_path(relative_path)
        if existing is not None:
            return await self.save_note_body(existing.id, body)
        if not is_meaningful(body):
            return False

        now = utc_now()
        title = derive_title(body, self.parser.title_max_length)
        note = Note(
            id=generate_id(),
            relative_path=relative_path,
            title=title,
            created=now,
            modified=now,
            body=body,
            search_text=search_key(title, body),
        )
        self._notes.insert(0, note)
        logger.info(f"Creating daily note {relative_path}")
        return await self._schedule_write(note.id)

    # =========================================================================
    # Folders and projects
    # =========================================================================

    def _retarget_dir(self, old: str, new: str) -> None:
        """Point the draft and the folder view at a directory's new location."""

        def moved(path: str) -> str:
            if path == old or path.startswith(old + "/"):
                return new + path[len(old):]
            return path

        if self._draft is not None:
            target = moved(self._draft.target_dir)
            if target != self._draft.target_dir:
                self._draft = self._draft.model_copy(update={"target_dir": target})
        folder = self._collection.folder_relative_path
        if self._collection.type == CollectionType.FOLDER and folder:
            if moved(folder) != folder:
                self._collection = Collection.folder(moved(folder))

    async def create_folder(self, relative_path: str) -> bool:
        """Create a folder under ``notes/folders`` and refresh the folder list."""
        try:
            with timed_operation("vault.create_folder", path=relative_path):
                await self.vault.create_folder(relative_path)
                self._folders = await self.vault.list_folders()
        except HomebaseError as e:
            self._surface_error("create_folder", e)
            return False
        return True

    async def rename_folder(self, relative_path: str, new_name: str) -> Optional[str]:
        """Rename a folder; notes inside it are reloaded from their new paths.

        Pending edits are written first so nothing is written to the old
        location afterwards.

        Returns:
            The folder's new location, or None on failure.
        """
        await self.flush()
        try:
            with timed_operation("vault.rename_folder", path=relative_path):
                new_path = await self.vault.rename_folder(relative_path, new_name)
        except HomebaseError as e:
            self._surface_error("rename_folder", e)
            return None
        self._retarget_dir(relative_path, new_path)
        await self.refresh()
        return new_path

    async def delete_folder(self, relative_path: str) -> bool:
        """Delete an empty folder."""
        try:
            with timed_operation("vault.delete_folder", path=relative_path):
                await self.vault.delete_folder(relative_path)
        except HomebaseError as e:
            self._surface_error("delete_folder", e)
            return False
        folder = self._collection.folder_relative_path or ""
        if self._collection.type == CollectionType.FOLDER and (
            folder == relative_path or folder.startswith(relative_path + "/")
        ):
            self._collection = Collection()
        await self.refresh()
        return True

    def _set_project(self, project: Project) -> None:
        others = [p for p in self._projects if p.id != project.id]
        self._projects = sorted([*others, project], key=lambda p: p.name.lower())

    async def create_project(self, name: str) -> Optional[Project]:
        try:
            with timed_operation("vault.create_project"):
                project = await self.vault.create_project(name)
        except HomebaseError as e:
            self._surface_error("create_project", e)
            return None
        self._set_project(project)
        return project

    async def update_project(
        self,
        project_id: str,
        name: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Optional[Project]:
        """Rename a project or change its status.

        A rename moves the project folder, so pending edits are flushed first
        and notes are reloaded afterwards.
        """
        previous = self.get_project(project_id)
        if name is not None:
            await self.flush()
        try:
            with timed_operation("vault.update_project", project_id=project_id):
                updated = await self.vault.update_project(project_id, name=name, status=status)
        except HomebaseError as e:
            self._surface_error("update_project", e)
            return None
        self._set_project(updated)
        if previous is not None and previous.folder_relative_path != updated.folder_relative_path:
            self._retarget_dir(previous.folder_relative_path, updated.folder_relative_path)
            await self.refresh()
        return updated

    # =========================================================================
    # Tasks
    # =========================================================================

    async def _save_if_changed(self, note: Note, body: str) -> bool:
        if body == note.body:
            return False
        return await self.save_note_body(note.id, body)

    async def toggle_task_status(
        self,
        note_id: str,
        task_id: str,
        status: TaskStatus,
        today: Optional[datetime.date] = None,
    ) -> bool:
        """Complete or reopen a task; recurring tasks are rescheduled instead."""
        note = self.get_note(note_id)
        if note is None:
            return False
        body = task_codec.toggle_status(note.body, task_id, status, today=today)
        return await self._save_if_changed(note, body)

    async def update_task_meta(
        self, note_id: str, task_id: str, **patch: TaskFieldValue
    ) -> bool:
        """Set or clear ``due``, ``priority``, ``every`` or ``order`` on a task."""
        note = self.get_note(note_id)
        if note is None:
            return False
        body = task_codec.update_metadata(note.body, task_id, **patch)
        return await self._save_if_changed(note, body)

    async def update_task_title(self, note_id: str, task_id: str, title: str) -> bool:
        note = self.get_note(note_id)
        if note is None:
            return False
        body = task_codec.update_title(note.body, task_id, title)
        return await self._save_if_changed(note, body)

    async def convert_checkbox(self, note_id: str, line_index: int) -> Optional[str]:
        """Promote a plain checkbox in a note to a task; returns the task id."""
        note = self.get_note(note_id)
        if note is None:
            return None
        task_id, body = task_codec.convert_checkbox_in_body(note.body, line_index)
        await self.save_note_body(note_id, body)
        return task_id

    async def update_task_order_batch(
        self, items: Iterable[Tuple[str, str, int]]
    ) -> bool:
        """Apply ``(note_id, task_id, order)`` updates with one write per note."""
        grouped: Dict[str, List[Tuple[str, int]]] = {}
        for note_id, task_id, order in items:
            grouped.setdefault(note_id, []).append((task_id, order))

        ok = True
        for note_id, updates in grouped.items():
            note = self.get_note(note_id)
            if note is None:
                continue
            body = note.body
            for task_id, order in updates:
                body = task_codec.update_field(body, task_id, "order", order)
            if body != note.body:
                ok = await self.save_note_body(note_id, body) and ok
        return ok

    async def create_task_note(
        self,
        title: str,
        due: TaskFieldValue = None,
        priority: Optional[TaskPriority] = None,
        every: Optional[TaskRecurrence] = None,
        project_id: Optional[str] = None,
        target_dir: str = INBOX_DIR,
    ) -> Optional[str]:
        """Create a note whose body is a single task line.

        The note and its task share the same id.

        Returns:
            The new note id, or None when the file could not be created.
        """
        note_id = generate_id()
        _, line = task_codec.build_line(
            title, id=note_id, due=due, priority=priority, every=every
        )
        body = f"{line}\n"
        projects = [project_id] if project_id else []
        now = utc_now()
        frontmatter = essential_frontmatter(note_id, now, now, projects, [], False)
        try:
            with timed_operation("vault.create_note", note_id=note_id):
                relative_path = await self.vault.create_note_from_markdown(
                    note_id, target_dir, title, render_note_file(frontmatter, body)
                )
        except HomebaseError as e:
            self._surface_error("create_task_note", e)
            return None

        note_title = derive_title(body, self.parser.title_max_length)
        self._notes.insert(
            0,
            Note(
                id=note_id,
                relative_path=relative_path,
                title=note_title,
                created=now,
                modified=now,
                projects=projects,
                body=body,
                search_text=search_key(note_title, body),
                raw_frontmatter=frontmatter,
            ),
        )
        self._sort_notes()
        return note_id

    async def add_task(
        self, text: str, today: Optional[datetime.date] = None
    ) -> Optional[str]:
        """Quick-add: parse shortcuts out of ``text`` and create a task note."""
        parsed = task_codec.parse_task_input(text, self._projects, today=today)
        if not parsed.title:
            return None
        return await self.create_task_note(
            parsed.title,
            due=parsed.due,
            priority=parsed.priority,
            every=parsed.every,
            project_id=parsed.project_id,
        )

    def list_tasks(self, include_done: bool = True) -> List[NoteTask]:
        """Every task of every non-archived note, in note order."""
        result: List[NoteTask] = []
        for note in self._notes:
            if note.kind == NoteKind.ARCHIVE:
                continue
            for task in task_codec.parse_tasks(note.body):
                if include_done or not task.is_done:
                    result.append(NoteTask(note_id=note.id, task=task))
        return result

    # =========================================================================
    # Queries
    # =========================================================================

    def search(self, query: str) -> List[Note]:
        """Non-archived notes whose title or body contain ``query``."""
        needle = normalize_for_search(query)
        if not needle:
            return []
        return [
            n
            for n in self._notes
            if n.kind != NoteKind.ARCHIVE and needle in n.search_text
        ]

    def notes_in(self, collection: Optional[Collection] = None) -> List[Note]:
        """Notes shown by a collection view."""
        collection = collection or self._collection
        kind = collection.type
        active = [n for n in self._notes if n.kind != NoteKind.ARCHIVE]

        if kind == CollectionType.ALL:
            return active
        if kind == CollectionType.INBOX:
            return [n for n in active if n.kind == NoteKind.INBOX]
        if kind == CollectionType.DAILY:
            return [n for n in active if n.kind == NoteKind.DAILY]
        if kind == CollectionType.ARCHIVE:
            return [n for n in self._notes if n.kind == NoteKind.ARCHIVE]
        if kind == CollectionType.TASKS:
            return [n for n in active if task_codec.parse_tasks(n.body)]
        if kind == CollectionType.SEARCH:
            return self.search(self._search_query)
        if kind == CollectionType.FOLDER:
            prefix = (collection.folder_relative_path or "") + "/"
            return [n for n in active if n.relative_path.startswith(prefix)]
        if kind == CollectionType.PROJECT:
            project = self.get_project(collection.project_id or "")
            prefix = project.folder_relative_path + "/" if project else None
            return [
                n
                for n in active
                if collection.project_id in n.projects
                or (prefix is not None and n.relative_path.startswith(prefix))
            ]
        raise ValidationError(
            f"Unknown collection type: {kind}",
            field="collection",
            value=kind,
            code=ErrorCode.VALIDATION_FAILED,
        )
