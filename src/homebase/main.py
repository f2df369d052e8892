#!/usr/bin/env python
"""Command-line entry point for Homebase."""
import argparse
import asyncio
import datetime
import logging
import os
import sys
from pathlib import Path

from homebase import __version__
from homebase.config import LOG_LEVELS, config
from homebase.exceptions import ConfigurationError, HomebaseError
from homebase.models.schema import Collection, CollectionType, TaskStatus
from homebase.observability import configure_logging, metrics
from homebase.services.note_store import NoteStore
from homebase.storage.vault import FileVault

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Homebase notes")
    parser.add_argument("--version", action="version", version=f"homebase {__version__}")
    parser.add_argument(
        "--vault-dir",
        help="Vault root directory",
        type=str,
        default=os.environ.get("HOMEBASE_VAULT_DIR"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=LOG_LEVELS,
        type=str.upper,
        default=config.log_level.upper(),
    )
    sub = parser.add_subparsers(dest="command", required=True)

    notes = sub.add_parser("notes", help="List notes")
    notes.add_argument(
        "--collection",
        choices=[c.value for c in CollectionType if c not in (CollectionType.FOLDER, CollectionType.PROJECT, CollectionType.SEARCH)],
        default=CollectionType.ALL.value,
    )

    tasks = sub.add_parser("tasks", help="List tasks")
    tasks.add_argument("--open", action="store_true", help="Only open tasks")

    new = sub.add_parser("new", help="Create a note from text (reads stdin when omitted)")
    new.add_argument("text", nargs="*")
    new.add_argument("--folder", help="Folder under notes/folders to create the note in")

    add = sub.add_parser("add", help="Quick-add a task, e.g. 'Pay rent tomorrow p1'")
    add.add_argument("text", nargs="+")

    done = sub.add_parser("done", help="Complete a task")
    done.add_argument("note_id")
    done.add_argument("task_id")

    daily = sub.add_parser("daily", help="Write today's daily note (reads stdin when omitted)")
    daily.add_argument("text", nargs="*")
    daily.add_argument("--date", help="Date key YYYY-MM-DD (default: today)")

    search = sub.add_parser("search", help="Search notes")
    search.add_argument("query", nargs="+")

    archive = sub.add_parser("archive", help="Archive a note")
    archive.add_argument("note_id")

    move = sub.add_parser("move", help="Move a note to another directory")
    move.add_argument("note_id")
    move.add_argument("target_dir")

    folders = sub.add_parser("folders", help="List folders, or create one")
    folders.add_argument("--create", metavar="NAME", help="Folder to create under notes/folders")

    projects = sub.add_parser("projects", help="List projects, or create one")
    projects.add_argument("--create", metavar="NAME", help="Name of a new project")

    sub.add_parser("stats", help="Show vault counts and operation timings")

    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.vault_dir:
        config.vault_dir = Path(args.vault_dir).expanduser()
    if config.vault_dir.exists() and not config.vault_dir.is_dir():
        raise ConfigurationError(
            "Vault path exists but is not a directory", config_key="vault_dir"
        )


def _read_text(words) -> str:
    if words:
        return " ".join(words)
    return sys.stdin.read()


def _print_note(note) -> None:
    print(f"{note.id}  {note.relative_path}  {note.title or '(untitled)'}")


def _print_stats(store: NoteStore) -> None:
    tasks = store.list_tasks()
    open_count = sum(1 for item in tasks if not item.task.is_done)
    print(f"notes: {len(store.notes)}")
    print(f"tasks: {len(tasks)} ({open_count} open)")
    print(f"projects: {len(store.projects)}")
    print(f"folders: {len(store.folders)}")

    summary = metrics.get_summary()
    print(
        f"operations: {summary['total_operations']} "
        f"({summary['total_errors']} failed)"
    )
    for operation, m in sorted(metrics.get_metrics().items()):
        print(f"  {operation}: {m['count']}x avg {m['avg_duration_ms']}ms")


async def run(args) -> int:
    """Execute one command against the configured vault."""
    store = NoteStore(FileVault(config.vault_dir), save_debounce_seconds=0)
    if not await store.load():
        print(f"error: {store.last_error}", file=sys.stderr)
        return 1

    ok = True
    if args.command == "notes":
        for note in store.notes_in(Collection(type=CollectionType(args.collection))):
            _print_note(note)

    elif args.command == "tasks":
        for item in store.list_tasks(include_done=not args.open):
            task = item.task
            mark = "x" if task.is_done else " "
            due = f" due {task.due.isoformat()}" if task.due else ""
            print(f"[{mark}] {task.title}{due}  ({item.note_id} {task.id})")

    elif args.command == "new":
        collection = (
            Collection.folder(f"notes/folders/{args.folder.strip('/')}")
            if args.folder
            else None
        )
        store.create_note(collection)
        store.save_draft_body(_read_text(args.text))
        await store.drain()
        if store.draft is not None:
            ok = False
            if store.last_error is None:
                print("error: nothing to save", file=sys.stderr)
        else:
            _print_note(store.notes[0])

    elif args.command == "add":
        note_id = await store.add_task(" ".join(args.text))
        ok = note_id is not None
        if ok:
            print(note_id)

    elif args.command == "done":
        store.require_note(args.note_id)
        ok = await store.toggle_task_status(args.note_id, args.task_id, TaskStatus.DONE)

    elif args.command == "daily":
        date_key = args.date or datetime.date.today().isoformat()
        ok = await store.save_daily_body(date_key, _read_text(args.text))

    elif args.command == "search":
        for note in store.search(" ".join(args.query)):
            _print_note(note)

    elif args.command == "archive":
        store.require_note(args.note_id)
        ok = await store.archive_note(args.note_id)

    elif args.command == "move":
        store.require_note(args.note_id)
        ok = await store.move_note(args.note_id, args.target_dir)

    elif args.command == "folders":
        if args.create:
            ok = await store.create_folder(f"notes/folders/{args.create.strip('/')}")
        for folder in store.folders:
            print(folder)

    elif args.command == "projects":
        if args.create:
            ok = await store.create_project(args.create) is not None
        for project in store.projects:
            print(f"{project.id}  {project.folder_relative_path}  {project.name}")

    elif args.command == "stats":
        _print_stats(store)

    await store.close()
    if store.last_error:
        print(f"error: {store.last_error}", file=sys.stderr)
        return 1
    return 0 if ok else 1


def main(argv=None):
    """Run the Homebase command line."""
    args = parse_args(argv)

    try:
        update_config(args)

        log_level = getattr(logging, args.log_level, logging.WARNING)
        try:
            configure_logging(log_dir=config.get_log_dir(), level=log_level, console=True)
        except OSError as e:
            # Fall back to basic console logging if file logging fails
            logging.basicConfig(level=log_level)
            logger.warning(f"Failed to configure file logging: {e}")

        sys.exit(asyncio.run(run(args)))
    except HomebaseError as e:
        print(f"error: {e.message}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
