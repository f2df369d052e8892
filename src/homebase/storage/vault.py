"""Vault boundary: reading and writing note files under a root directory.

The store only talks to the :class:`Vault` protocol, so tests can swap in an
in-memory fake. :class:`FileVault` is the real implementation; its blocking
filesystem work runs in a worker thread and every write is atomic (temp file
in the same directory, then ``os.replace``).
"""
import asyncio
import datetime
import json
import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, Field

from homebase.config import (
    ARCHIVE_DIR,
    CREATABLE_ROOTS,
    DAILY_DIR,
    FOLDERS_DIR,
    INBOX_DIR,
    PROJECTS_DIR,
    config,
)
from homebase.exceptions import ErrorCode, StorageError, ValidationError
from homebase.models.schema import (
    NoteKind,
    Project,
    format_timestamp,
    generate_id,
    kind_from_relative_path,
    utc_now,
    validate_relative_path,
)
from homebase.utils import file_slug

logger = logging.getLogger(__name__)

PROJECT_META_FILE = ".project.json"
VAULT_DIRS = (INBOX_DIR, DAILY_DIR, ARCHIVE_DIR, FOLDERS_DIR, PROJECTS_DIR)


class VaultNoteEntry(BaseModel):
    """A note file found while enumerating the vault."""

    relative_path: str
    kind: NoteKind
    mtime_ms: int = Field(default=0)
    size: int = Field(default=0)


@runtime_checkable
class Vault(Protocol):
    """Contract for the file storage the store writes through.

    Every call either fully succeeds or raises; no partial writes are visible.
    """

    async def list_notes(self, include_archived: bool = True) -> List[VaultNoteEntry]:
        """Enumerate note files, newest modification first."""
        ...

    async def read_note(self, relative_path: str) -> str:
        """Return a note file's text."""
        ...

    async def write_note(self, relative_path: str, contents: str) -> None:
        """Replace (or create) a note file."""
        ...

    async def create_note_from_markdown(
        self,
        note_id: str,
        target_dir: str,
        title_hint: Optional[str],
        contents: str,
    ) -> str:
        """Create a new note file and return its relative path."""
        ...

    async def archive_note(self, relative_path: str) -> str:
        """Move a note under ``notes/archive`` and return its new path."""
        ...

    async def move_note(self, relative_path: str, target_dir: str) -> str:
        """Move a note to another directory and return its new path."""
        ...

    async def list_projects(self) -> List[Project]:
        """Enumerate projects, sorted by name."""
        ...

    async def create_project(self, name: str) -> Project:
        """Create a project folder with its metadata file."""
        ...

    async def update_project(
        self,
        project_id: str,
        name: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Project:
        """Rename or change the status of a project; a new name renames its folder."""
        ...

    async def list_folders(self) -> List[str]:
        """Every directory under ``notes/folders``, sorted."""
        ...

    async def create_folder(self, relative_path: str) -> str:
        """Create a folder (and its parents) under ``notes/folders``."""
        ...

    async def rename_folder(self, relative_path: str, new_name: str) -> str:
        """Rename a folder in place and return its new path."""
        ...

    async def delete_folder(self, relative_path: str) -> None:
        """Remove an empty folder."""
        ...


def is_creatable_dir(target_dir: str) -> bool:
    """Whether new notes may be created or moved into ``target_dir``."""
    return any(
        target_dir == root or target_dir.startswith(root + "/")
        for root in CREATABLE_ROOTS
    )


def short_id(note_id: str) -> str:
    """First eight id characters without dashes, used in file names."""
    compact = note_id.replace("-", "")[:8]
    return compact or uuid.uuid4().hex[:8]


def note_file_name(
    note_id: str, title_hint: Optional[str], today: Optional[datetime.date] = None
) -> str:
    """File name for a newly created note."""
    date_key = (today or datetime.date.today()).isoformat()
    return f"{date_key}-{file_slug(title_hint or '')}-{short_id(note_id)}.md"


def daily_note_path(date_key: str) -> str:
    return f"{DAILY_DIR}/{date_key}.md"


class FileVault:
    """Vault backed by a directory on the local filesystem."""

    def __init__(self, root: Optional[Union[str, Path]] = None):
        self.root = Path(root) if root is not None else config.vault_dir
        self._structure_ready = False

    # ------------------------------------------------------------------
    # Path handling
    # ------------------------------------------------------------------

    def _relative(self, relative_path: str) -> str:
        try:
            return validate_relative_path(relative_path)
        except ValueError as e:
            raise ValidationError(
                str(e),
                field="relative_path",
                value=relative_path,
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
            ) from e

    def resolve(self, relative_path: str) -> Path:
        """Absolute path for a vault-relative location.

        Raises:
            ValidationError: If the location is absolute, contains ``..`` or
                resolves outside the vault through a symlink.
        """
        full = self.root / self._relative(relative_path)
        root = self.root.resolve()
        if not full.resolve().is_relative_to(root):
            raise ValidationError(
                "Path resolves outside the vault",
                field="relative_path",
                value=relative_path,
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
            )
        return full

    def _to_relative(self, full_path: Path) -> str:
        return full_path.relative_to(self.root).as_posix()

    def _creatable_dir(self, target_dir: str) -> str:
        target = self._relative(target_dir)
        if not is_creatable_dir(target):
            raise ValidationError(
                "Target directory must be under " + ", ".join(CREATABLE_ROOTS),
                field="target_dir",
                value=target_dir,
                code=ErrorCode.INVALID_TARGET_DIR,
            )
        return target

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def ensure_vault_structure(self) -> None:
        """Create the standard vault directories if they are missing."""
        if self._structure_ready:
            return
        try:
            for rel in VAULT_DIRS:
                (self.root / rel).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                "Failed to create vault directories",
                operation="ensure_vault_structure",
                path=str(self.root),
                code=ErrorCode.STORAGE_CREATE_FAILED,
                original_error=e,
            ) from e
        self._structure_ready = True

    def _write_atomic(self, path: Path, contents: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp-{uuid.uuid4().hex}")
        try:
            with open(tmp_path, "w", encoding="utf-8", newline="") as f:
                f.write(contents)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError:
            if tmp_path.exists():
                tmp_path.unlink()
            raise

    def _list_notes_sync(self, include_archived: bool) -> List[VaultNoteEntry]:
        self.ensure_vault_structure()
        notes_root = self.root / "notes"
        entries: List[VaultNoteEntry] = []
        try:
            for path in notes_root.rglob("*.md"):
                if not path.is_file() or path.is_symlink():
                    continue
                rel = self._to_relative(path)
                if not include_archived and rel.startswith(ARCHIVE_DIR + "/"):
                    continue
                stat = path.stat()
                entries.append(
                    VaultNoteEntry(
                        relative_path=rel,
                        kind=kind_from_relative_path(rel),
                        mtime_ms=int(stat.st_mtime * 1000),
                        size=stat.st_size,
                    )
                )
        except OSError as e:
            raise StorageError(
                "Failed to list notes",
                operation="list_notes",
                path=str(notes_root),
                code=ErrorCode.STORAGE_LIST_FAILED,
                original_error=e,
            ) from e
        entries.sort(key=lambda e: e.mtime_ms, reverse=True)
        return entries

    def _read_note_sync(self, relative_path: str) -> str:
        full = self.resolve(relative_path)
        try:
            return full.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(
                f"Failed to read note: {e.strerror or e}",
                operation="read_note",
                path=relative_path,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def _write_note_sync(self, relative_path: str, contents: str) -> None:
        full = self.resolve(relative_path)
        try:
            self._write_atomic(full, contents)
        except OSError as e:
            raise StorageError(
                f"Failed to write note: {e.strerror or e}",
                operation="write_note",
                path=relative_path,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def _create_note_sync(
        self,
        note_id: str,
        target_dir: str,
        title_hint: Optional[str],
        contents: str,
    ) -> str:
        if not note_id or not note_id.strip():
            raise ValidationError(
                "Note ID is required", field="id", code=ErrorCode.NOTE_ID_REQUIRED
            )
        self.ensure_vault_structure()
        target = self._creatable_dir(target_dir or INBOX_DIR)
        rel_path = f"{target}/{note_file_name(note_id.strip(), title_hint)}"
        full = self.resolve(rel_path)
        if full.exists():
            raise StorageError(
                "Note file already exists",
                operation="create_note",
                path=rel_path,
                code=ErrorCode.NOTE_ALREADY_EXISTS,
            )
        try:
            self._write_atomic(full, contents)
        except OSError as e:
            raise StorageError(
                f"Failed to create note: {e.strerror or e}",
                operation="create_note",
                path=rel_path,
                code=ErrorCode.STORAGE_CREATE_FAILED,
                original_error=e,
            ) from e
        logger.info(f"Created note file {rel_path}")
        return rel_path

    def _rename(self, source: Path, dest: Path, operation: str) -> str:
        if dest.exists():
            raise StorageError(
                "A note with that name already exists at the destination",
                operation=operation,
                path=str(dest),
                code=ErrorCode.NOTE_ALREADY_EXISTS,
            )
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, dest)
        except OSError as e:
            raise StorageError(
                f"Failed to move note: {e.strerror or e}",
                operation=operation,
                path=str(source),
                code=ErrorCode.STORAGE_MOVE_FAILED,
                original_error=e,
            ) from e
        return self._to_relative(dest)

    def _require_file(self, relative_path: str, operation: str) -> Path:
        source = self.resolve(relative_path)
        if not source.is_file():
            raise StorageError(
                "Note does not exist",
                operation=operation,
                path=relative_path,
                code=ErrorCode.NOTE_NOT_FOUND,
            )
        return source

    def _archive_note_sync(self, relative_path: str) -> str:
        rel = self._relative(relative_path)
        source = self._require_file(rel, "archive_note")
        if rel.startswith(ARCHIVE_DIR + "/"):
            return rel
        if not rel.startswith("notes/"):
            raise ValidationError(
                "Can only archive notes under notes/",
                field="relative_path",
                value=relative_path,
            )
        dest = self.root / ARCHIVE_DIR / rel[len("notes/"):]
        new_rel = self._rename(source, dest, "archive_note")
        logger.info(f"Archived {rel} -> {new_rel}")
        return new_rel

    def _move_note_sync(self, relative_path: str, target_dir: str) -> str:
        rel = self._relative(relative_path)
        source = self._require_file(rel, "move_note")
        target = self._creatable_dir(target_dir)
        dest = self.resolve(f"{target}/{source.name}")
        if dest == source:
            return rel
        new_rel = self._rename(source, dest, "move_note")
        logger.info(f"Moved {rel} -> {new_rel}")
        return new_rel

    def _project_folders(self) -> List[Path]:
        projects_root = self.root / PROJECTS_DIR
        try:
            return sorted(p for p in projects_root.iterdir() if p.is_dir())
        except OSError as e:
            raise StorageError(
                "Failed to list projects",
                operation="list_projects",
                path=str(projects_root),
                code=ErrorCode.STORAGE_LIST_FAILED,
                original_error=e,
            ) from e

    def _read_project(self, folder: Path) -> Optional[Project]:
        meta_path = folder / PROJECT_META_FILE
        if not meta_path.is_file():
            return None
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
            return Project(
                id=meta["id"],
                name=meta["name"],
                status=meta.get("status", "active"),
                created=meta.get("created"),
                modified=meta.get("modified"),
                folder_relative_path=self._to_relative(folder),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping project {folder.name}: unreadable metadata ({e})")
            return None

    def _write_project_meta(self, folder: Path, project: Project) -> None:
        meta = {
            "id": project.id,
            "name": project.name,
            "status": project.status,
            "created": project.created,
            "modified": project.modified,
        }
        try:
            self._write_atomic(folder / PROJECT_META_FILE, json.dumps(meta, indent=2))
        except OSError as e:
            raise StorageError(
                f"Failed to write project metadata: {e.strerror or e}",
                operation="write_project",
                path=self._to_relative(folder),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def _project_folder_for(self, name: str, current: Optional[Path] = None) -> Path:
        """Folder named after ``name``; suffixed when another folder has it."""
        base = file_slug(name, fallback="project")
        folder = self.root / PROJECTS_DIR / base
        if folder.exists() and folder != current:
            folder = folder.with_name(f"{base}-{uuid.uuid4().hex[:6]}")
        return folder

    @staticmethod
    def _project_name(name: Optional[str]) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Project name is required", field="name", value=name)
        return cleaned

    def _list_projects_sync(self) -> List[Project]:
        self.ensure_vault_structure()
        projects = [
            project
            for project in map(self._read_project, self._project_folders())
            if project is not None
        ]
        projects.sort(key=lambda p: p.name.lower())
        return projects

    def _create_project_sync(self, name: str) -> Project:
        name = self._project_name(name)
        self.ensure_vault_structure()
        folder = self._project_folder_for(name)
        now = format_timestamp(utc_now())
        project = Project(
            id=generate_id(),
            name=name,
            status="active",
            created=now,
            modified=now,
            folder_relative_path=self._to_relative(folder),
        )
        try:
            folder.mkdir(parents=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create project folder: {e.strerror or e}",
                operation="create_project",
                path=project.folder_relative_path,
                code=ErrorCode.STORAGE_CREATE_FAILED,
                original_error=e,
            ) from e
        self._write_project_meta(folder, project)
        logger.info(f"Created project {name!r} in {project.folder_relative_path}")
        return project

    def _update_project_sync(
        self, project_id: str, name: Optional[str], status: Optional[str]
    ) -> Project:
        self.ensure_vault_structure()
        for folder in self._project_folders():
            project = self._read_project(folder)
            if project is not None and project.id == project_id:
                break
        else:
            raise StorageError(
                "Project not found",
                operation="update_project",
                path=project_id,
                code=ErrorCode.PROJECT_NOT_FOUND,
            )

        update = {"modified": format_timestamp(utc_now())}
        if status is not None:
            update["status"] = status
        if name is not None:
            update["name"] = self._project_name(name)
            dest = self._project_folder_for(update["name"], current=folder)
            if dest != folder:
                try:
                    os.rename(folder, dest)
                except OSError as e:
                    raise StorageError(
                        f"Failed to rename project folder: {e.strerror or e}",
                        operation="update_project",
                        path=self._to_relative(folder),
                        code=ErrorCode.STORAGE_MOVE_FAILED,
                        original_error=e,
                    ) from e
                logger.info(f"Renamed project folder {folder.name} -> {dest.name}")
                folder = dest
        update["folder_relative_path"] = self._to_relative(folder)

        updated = project.model_copy(update=update)
        self._write_project_meta(folder, updated)
        return updated

    def _folder_relative(self, relative_path: str) -> str:
        rel = self._relative(relative_path)
        if not rel.startswith(FOLDERS_DIR + "/"):
            raise ValidationError(
                f"Folder path must be under {FOLDERS_DIR}/",
                field="relative_path",
                value=relative_path,
                code=ErrorCode.INVALID_TARGET_DIR,
            )
        return rel

    def _existing_folder(self, relative_path: str, operation: str) -> Path:
        full = self.resolve(self._folder_relative(relative_path))
        if not full.is_dir():
            raise StorageError(
                "Folder does not exist",
                operation=operation,
                path=relative_path,
                code=ErrorCode.FOLDER_NOT_FOUND,
            )
        return full

    def _list_folders_sync(self) -> List[str]:
        self.ensure_vault_structure()
        folders_root = self.root / FOLDERS_DIR
        try:
            folders = [
                self._to_relative(p)
                for p in folders_root.rglob("*")
                if p.is_dir() and not p.is_symlink()
            ]
        except OSError as e:
            raise StorageError(
                "Failed to list folders",
                operation="list_folders",
                path=str(folders_root),
                code=ErrorCode.STORAGE_LIST_FAILED,
                original_error=e,
            ) from e
        return sorted(folders)

    def _create_folder_sync(self, relative_path: str) -> str:
        self.ensure_vault_structure()
        rel = self._folder_relative(relative_path)
        full = self.resolve(rel)
        if full.exists() and not full.is_dir():
            raise StorageError(
                "A file with that name already exists",
                operation="create_folder",
                path=rel,
                code=ErrorCode.FOLDER_ALREADY_EXISTS,
            )
        try:
            full.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create folder: {e.strerror or e}",
                operation="create_folder",
                path=rel,
                code=ErrorCode.STORAGE_CREATE_FAILED,
                original_error=e,
            ) from e
        return rel

    def _rename_folder_sync(self, relative_path: str, new_name: str) -> str:
        source = self._existing_folder(relative_path, "rename_folder")
        name = (new_name or "").strip()
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise ValidationError("Invalid folder name", field="new_name", value=new_name)
        dest = source.parent / name
        if dest == source:
            return self._to_relative(source)
        if dest.exists():
            raise StorageError(
                "A folder with that name already exists",
                operation="rename_folder",
                path=self._to_relative(dest),
                code=ErrorCode.FOLDER_ALREADY_EXISTS,
            )
        try:
            os.rename(source, dest)
        except OSError as e:
            raise StorageError(
                f"Failed to rename folder: {e.strerror or e}",
                operation="rename_folder",
                path=relative_path,
                code=ErrorCode.STORAGE_MOVE_FAILED,
                original_error=e,
            ) from e
        new_rel = self._to_relative(dest)
        logger.info(f"Renamed folder {relative_path} -> {new_rel}")
        return new_rel

    def _delete_folder_sync(self, relative_path: str) -> None:
        full = self._existing_folder(relative_path, "delete_folder")
        if any(full.iterdir()):
            raise StorageError(
                "Folder is not empty",
                operation="delete_folder",
                path=relative_path,
                code=ErrorCode.FOLDER_NOT_EMPTY,
            )
        try:
            full.rmdir()
        except OSError as e:
            raise StorageError(
                f"Failed to delete folder: {e.strerror or e}",
                operation="delete_folder",
                path=relative_path,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e
        logger.info(f"Deleted folder {relative_path}")

    # ------------------------------------------------------------------
    # Vault protocol
    # ------------------------------------------------------------------

    async def list_notes(self, include_archived: bool = True) -> List[VaultNoteEntry]:
        return await asyncio.to_thread(self._list_notes_sync, include_archived)

    async def read_note(self, relative_path: str) -> str:
        return await asyncio.to_thread(self._read_note_sync, relative_path)

    async def write_note(self, relative_path: str, contents: str) -> None:
        await asyncio.to_thread(self._write_note_sync, relative_path, contents)

    async def create_note_from_markdown(
        self,
        note_id: str,
        target_dir: str,
        title_hint: Optional[str],
        contents: str,
    ) -> str:
        return await asyncio.to_thread(
            self._create_note_sync, note_id, target_dir, title_hint, contents
        )

    async def archive_note(self, relative_path: str) -> str:
        return await asyncio.to_thread(self._archive_note_sync, relative_path)

    async def move_note(self, relative_path: str, target_dir: str) -> str:
        return await asyncio.to_thread(self._move_note_sync, relative_path, target_dir)

    async def list_projects(self) -> List[Project]:
        return await asyncio.to_thread(self._list_projects_sync)

    async def create_project(self, name: str) -> Project:
        return await asyncio.to_thread(self._create_project_sync, name)

    async def update_project(
        self,
        project_id: str,
        name: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Project:
        return await asyncio.to_thread(self._update_project_sync, project_id, name, status)

    async def list_folders(self) -> List[str]:
        return await asyncio.to_thread(self._list_folders_sync)

    async def create_folder(self, relative_path: str) -> str:
        return await asyncio.to_thread(self._create_folder_sync, relative_path)

    async def rename_folder(self, relative_path: str, new_name: str) -> str:
        return await asyncio.to_thread(self._rename_folder_sync, relative_path, new_name)

    async def delete_folder(self, relative_path: str) -> None:
        await asyncio.to_thread(self._delete_folder_sync, relative_path)
