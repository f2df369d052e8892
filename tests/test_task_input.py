"""Tests for quick-add task parsing."""
import datetime

import pytest

from homebase.models.schema import Project, TaskPriority, TaskRecurrence
from homebase.storage.tasks import parse_task_input

TODAY = datetime.date(2026, 1, 15)

HOME_BASE = Project(
    id="p-home",
    name="Home Base",
    folder_relative_path="notes/projects/home-base",
)


class TestParseTaskInput:
    """Natural-language shortcuts in a quick-add line."""

    def test_full_example(self):
        result = parse_task_input(
            "Pay rent tomorrow p1 #home-base every week", [HOME_BASE], today=TODAY
        )
        assert result.title == "Pay rent"
        assert result.due == datetime.date(2026, 1, 16)
        assert result.priority == TaskPriority.URGENT
        assert result.every == TaskRecurrence.WEEKLY
        assert result.project_id == "p-home"

    def test_plain_title(self):
        result = parse_task_input("  Buy   milk ", today=TODAY)
        assert result.title == "Buy milk"
        assert result.due is None
        assert result.priority is None
        assert result.every is None
        assert result.project_id is None

    def test_empty(self):
        assert parse_task_input("   ").title == ""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Stretch today", datetime.date(2026, 1, 15)),
            ("Stretch tomorrow", datetime.date(2026, 1, 16)),
            ("Stretch next week", datetime.date(2026, 1, 22)),
            ("Stretch next month", datetime.date(2026, 2, 15)),
            ("Stretch in 3 days", datetime.date(2026, 1, 18)),
            ("Stretch in 1 day", datetime.date(2026, 1, 16)),
            ("Stretch in 2 weeks", datetime.date(2026, 1, 29)),
        ],
    )
    def test_due_phrases(self, text, expected):
        result = parse_task_input(text, today=TODAY)
        assert result.due == expected
        assert result.title == "Stretch"

    def test_next_month_clamps(self):
        result = parse_task_input("Plan next month", today=datetime.date(2026, 1, 31))
        assert result.due == datetime.date(2026, 2, 28)

    @pytest.mark.parametrize(
        "code,priority",
        [
            ("p1", TaskPriority.URGENT),
            ("p2", TaskPriority.HIGH),
            ("P3", TaskPriority.MEDIUM),
            ("p4", TaskPriority.LOW),
        ],
    )
    def test_priority_codes(self, code, priority):
        result = parse_task_input(f"Fix bike {code}", today=TODAY)
        assert result.priority == priority
        assert result.title == "Fix bike"

    def test_out_of_range_priority_stays_in_title(self):
        result = parse_task_input("Fix p5 bike", today=TODAY)
        assert result.priority is None
        assert result.title == "Fix p5 bike"

    def test_recurrence_words(self):
        result = parse_task_input("Standup daily", today=TODAY)
        assert result.every == TaskRecurrence.DAILY
        assert result.title == "Standup"

    def test_every_unit(self):
        result = parse_task_input("Pay card every month", today=TODAY)
        assert result.every == TaskRecurrence.MONTHLY
        assert result.title == "Pay card"

    def test_unknown_project_slug_kept(self):
        result = parse_task_input("Call #unknown", [HOME_BASE], today=TODAY)
        assert result.project_id is None
        assert result.title == "Call #unknown"

    def test_first_matching_project_token_used(self):
        result = parse_task_input("#misc Ship #home-base", [HOME_BASE], today=TODAY)
        assert result.project_id == "p-home"
        assert result.title == "#misc Ship"
