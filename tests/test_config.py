"""Tests for configuration loading and validation."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from homebase.config import INBOX_DIR, HomebaseConfig


class TestHomebaseConfig:
    """Settings read from the environment."""

    def test_defaults(self, monkeypatch):
        for var in (
            "HOMEBASE_SAVE_DEBOUNCE_MS",
            "HOMEBASE_TITLE_MAX_LENGTH",
            "HOMEBASE_DEFAULT_TARGET_DIR",
            "HOMEBASE_LOG_DIR",
            "HOMEBASE_LOG_LEVEL",
        ):
            monkeypatch.delenv(var, raising=False)
        cfg = HomebaseConfig()
        assert cfg.save_debounce_ms == 500
        assert cfg.save_debounce_seconds == 0.5
        assert cfg.title_max_length == 80
        assert cfg.default_target_dir == INBOX_DIR
        assert cfg.log_dir is None
        assert cfg.log_level == "WARNING"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOMEBASE_VAULT_DIR", str(tmp_path / "vault"))
        monkeypatch.setenv("HOMEBASE_SAVE_DEBOUNCE_MS", "250")
        monkeypatch.setenv("HOMEBASE_TITLE_MAX_LENGTH", "40")
        monkeypatch.setenv("HOMEBASE_DEFAULT_TARGET_DIR", "notes/folders/work")
        monkeypatch.setenv("HOMEBASE_LOG_LEVEL", "debug")
        cfg = HomebaseConfig()
        assert cfg.vault_dir == tmp_path / "vault"
        assert cfg.save_debounce_seconds == 0.25
        assert cfg.title_max_length == 40
        assert cfg.default_target_dir == "notes/folders/work"
        assert cfg.log_level == "debug"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"save_debounce_ms": -1},
            {"title_max_length": 0},
            {"default_target_dir": "notes/daily"},
            {"default_target_dir": "elsewhere"},
            {"log_level": "LOUD"},
        ],
    )
    def test_rejects_invalid_settings(self, overrides):
        with pytest.raises(ValidationError):
            HomebaseConfig(**overrides)

    def test_log_dir_default(self):
        cfg = HomebaseConfig(log_dir=None)
        assert cfg.get_log_dir() == Path.home() / ".homebase" / "logs"

    def test_relative_log_dir_is_under_vault(self, tmp_path):
        cfg = HomebaseConfig(vault_dir=tmp_path, log_dir=Path("logs"))
        assert cfg.get_log_dir() == tmp_path / "logs"

    def test_absolute_log_dir(self, tmp_path):
        cfg = HomebaseConfig(log_dir=tmp_path / "elsewhere")
        assert cfg.get_log_dir() == tmp_path / "elsewhere"

    def test_test_config_fixture_points_at_tmp(self, test_config, tmp_path):
        assert test_config.vault_dir == tmp_path / "vault"
