"""
Homebase - local-first Markdown notes with first-class tasks.

Notes live as Markdown files with YAML front matter inside a vault directory.
Checklist lines can be promoted to ID-addressable tasks carrying due dates,
priorities, recurrence and ordering tags. Edits flow through a single
in-memory store that persists drafts exactly once and writes every later
change back to disk.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("homebase-notes")
except PackageNotFoundError:
    __version__ = "0.3.0"
