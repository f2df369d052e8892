"""Common test fixtures for Homebase."""

import pytest

from homebase.config import config
from homebase.observability import metrics
from homebase.services.note_store import NoteStore
from homebase.storage.vault import FileVault
from tests.fakes import FakeVault


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep metrics from leaking between tests."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "vault_dir", tmp_path / "vault")
    monkeypatch.setattr(config, "log_dir", tmp_path / "logs")
    yield config


@pytest.fixture
def fake_vault():
    """Create an empty in-memory vault."""
    return FakeVault()


@pytest.fixture
def store(fake_vault):
    """Create a NoteStore over the fake vault with no debounce delay."""
    return NoteStore(fake_vault, save_debounce_seconds=0)


@pytest.fixture
def file_vault(test_config):
    """Create a FileVault rooted in a temporary directory."""
    vault = FileVault(test_config.vault_dir)
    vault.ensure_vault_structure()
    return vault
