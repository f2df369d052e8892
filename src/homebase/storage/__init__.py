"""Storage layer for Homebase: note file codecs and the vault boundary."""

from homebase.storage.markdown_parser import MarkdownParser
from homebase.storage.vault import FileVault, Vault, VaultNoteEntry

__all__ = [
    "MarkdownParser",
    "Vault",
    "FileVault",
    "VaultNoteEntry",
]
