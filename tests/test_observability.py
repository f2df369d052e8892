"""Tests for the observability module.

Tests for metrics collection, logging configuration, and error sanitization.
"""
import asyncio
import logging
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from unittest.mock import patch

import pytest

from homebase.observability import (
    MetricsCollector,
    _sanitize_error_message,
    configure_logging,
    is_logging_configured,
    timed_operation,
)


class TestErrorMessageSanitization:
    """Tests for error message sanitization."""

    def test_sanitize_none_returns_none(self):
        """Sanitizing None should return None."""
        assert _sanitize_error_message(None) is None

    def test_sanitize_simple_message(self):
        """Simple messages should pass through unchanged."""
        assert _sanitize_error_message("Simple error") == "Simple error"

    def test_sanitize_removes_home_directory(self):
        """Home directory paths should be replaced with ~."""
        home = str(Path.home())
        message = f"{home}/Homebase/notes/inbox/a.md: Permission denied"
        result = _sanitize_error_message(message)
        assert home not in result
        assert "~" in result
        assert "notes/inbox/a.md" in result

    def test_sanitize_removes_newlines(self):
        """Newlines should be replaced with spaces."""
        result = _sanitize_error_message("Line 1\nLine 2\r\nLine 3")
        assert result == "Line 1 Line 2 Line 3"

    def test_sanitize_truncates_long_messages(self):
        """Long messages should be truncated with ellipsis."""
        result = _sanitize_error_message("a" * 300)
        assert len(result) == 200
        assert result.endswith("...")

    def test_sanitize_custom_max_length(self):
        result = _sanitize_error_message("a" * 100, max_length=50)
        assert len(result) == 50
        assert result.endswith("...")


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    @pytest.fixture
    def collector(self):
        return MetricsCollector()

    def test_record_successful_operation(self, collector):
        collector.record_operation("vault.write_note", 100.0, True)

        metrics = collector.get_metrics()
        assert metrics["vault.write_note"]["count"] == 1
        assert metrics["vault.write_note"]["success_count"] == 1
        assert metrics["vault.write_note"]["error_count"] == 0
        assert metrics["vault.write_note"]["avg_duration_ms"] == 100.0

    def test_record_failed_operation(self, collector):
        collector.record_operation("vault.write_note", 50.0, False, "Disk full")

        metrics = collector.get_metrics()
        assert metrics["vault.write_note"]["error_count"] == 1
        assert metrics["vault.write_note"]["last_error"] == "Disk full"
        assert metrics["vault.write_note"]["last_error_time"] is not None

    def test_error_message_is_sanitized(self, collector):
        """Error messages are sanitized before storage."""
        home = str(Path.home())
        collector.record_operation("op", 1.0, False, f"{home}/private.md: denied")
        stored = collector.get_metrics()["op"]["last_error"]
        assert home not in stored

    def test_multiple_operations_aggregated(self, collector):
        collector.record_operation("op", 100.0, True)
        collector.record_operation("op", 200.0, True)
        collector.record_operation("op", 300.0, False, "Error")

        metrics = collector.get_metrics()["op"]
        assert metrics["count"] == 3
        assert metrics["success_count"] == 2
        assert metrics["avg_duration_ms"] == 200.0
        assert metrics["min_duration_ms"] == 100.0
        assert metrics["max_duration_ms"] == 300.0

    def test_get_summary(self, collector):
        collector.record_operation("op1", 100.0, True)
        collector.record_operation("op2", 200.0, False, "Error")

        summary = collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["total_success"] == 1
        assert summary["total_errors"] == 1
        assert summary["overall_success_rate"] == 0.5
        assert set(summary["operations_tracked"]) == {"op1", "op2"}

    def test_empty_summary(self, collector):
        assert collector.get_summary()["overall_success_rate"] == 1.0

    def test_reset_metrics(self, collector):
        collector.record_operation("op", 100.0, True)
        collector.reset()
        assert collector.get_metrics() == {}


class TestTimedOperation:
    """Tests for timed_operation context manager."""

    def test_records_success(self):
        collector = MetricsCollector()
        with patch("homebase.observability.metrics", collector):
            with timed_operation("vault.read_note", note_id="abc") as op:
                time.sleep(0.01)
                op["result_count"] = 1

        metrics = collector.get_metrics()
        assert metrics["vault.read_note"]["success_count"] == 1
        assert metrics["vault.read_note"]["avg_duration_ms"] >= 10

    def test_records_failure_and_reraises(self):
        collector = MetricsCollector()
        with patch("homebase.observability.metrics", collector):
            with pytest.raises(ValueError):
                with timed_operation("vault.write_note"):
                    raise ValueError("Test error")

        metrics = collector.get_metrics()
        assert metrics["vault.write_note"]["error_count"] == 1
        assert "Test error" in metrics["vault.write_note"]["last_error"]

    @pytest.mark.anyio
    async def test_brackets_awaits(self):
        """The timer spans an awaited call inside the block."""
        collector = MetricsCollector()
        with patch("homebase.observability.metrics", collector):
            with timed_operation("vault.list_notes"):
                await asyncio.sleep(0.01)

        assert collector.get_metrics()["vault.list_notes"]["avg_duration_ms"] >= 10


class TestConfigureLogging:
    """Tests for configure_logging function."""

    @pytest.fixture(autouse=True)
    def _restore_handlers(self):
        """Remove handlers added to the package logger during a test."""
        root = logging.getLogger("homebase")
        before = list(root.handlers)
        level = root.level
        yield
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)

    def test_creates_directory_and_returns_path(self, tmp_path):
        log_dir = tmp_path / "logs"
        result = configure_logging(log_dir=log_dir, console=False)
        assert result == log_dir
        assert log_dir.is_dir()
        assert is_logging_configured()

    def test_sets_level(self, tmp_path):
        configure_logging(log_dir=tmp_path / "logs", level=logging.DEBUG, console=False)
        assert logging.getLogger("homebase").level == logging.DEBUG

    def test_writes_rotating_log_file(self, tmp_path):
        log_dir = tmp_path / "logs"
        configure_logging(log_dir=log_dir, console=False)
        logging.getLogger("homebase.test").info("hello from the store")
        for handler in logging.getLogger("homebase").handlers:
            handler.flush()
        assert "hello from the store" in (log_dir / "homebase.log").read_text()

    def test_file_handler_added_once(self, tmp_path):
        configure_logging(log_dir=tmp_path / "logs", console=False)
        configure_logging(log_dir=tmp_path / "logs", console=False)
        handlers = [
            h
            for h in logging.getLogger("homebase").handlers
            if isinstance(h, RotatingFileHandler)
        ]
        assert len(handlers) == 1
