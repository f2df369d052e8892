"""Tests for the task micro-format codec."""
import datetime

import pytest

from homebase.exceptions import ErrorCode, TaskConversionError, ValidationError
from homebase.models.schema import TaskPriority, TaskRecurrence, TaskStatus
from homebase.storage.tasks import (
    add_months,
    build_line,
    convert_checkbox,
    convert_checkbox_in_body,
    find_task,
    parse_tasks,
    strip_metadata,
    toggle_status,
    update_field,
    update_metadata,
    update_status,
    update_title,
)

D = datetime.date


# =============================================================================
# Parsing
# =============================================================================


class TestParseTasks:
    """Finding tasks inside a body."""

    def test_parses_tasks_with_ids_and_metadata(self):
        body = "\n".join(
            [
                "- [ ] Call Alex #task:abc123 @due(2026-01-22) @priority(high) @every(weekly) @order(2000)",
                "- [x] Done item #task:done1",
                "- [ ] Regular checkbox",
            ]
        )
        tasks = parse_tasks(body)
        assert len(tasks) == 2
        first = tasks[0]
        assert first.id == "abc123"
        assert first.title == "Call Alex"
        assert first.status == TaskStatus.TODO
        assert first.due == D(2026, 1, 22)
        assert first.priority == TaskPriority.HIGH
        assert first.every == TaskRecurrence.WEEKLY
        assert first.order == 2000
        assert first.line == 0
        assert tasks[1].status == TaskStatus.DONE
        assert tasks[1].line == 1

    def test_plain_checkboxes_are_not_tasks(self):
        body = "- [ ] one\n- [x] two\n* [ ] three"
        assert parse_tasks(body) == []

    def test_prose_lookalikes_are_not_tags(self):
        """Substrings that merely resemble tags are ordinary title text."""
        body = "- [ ] email me@due(2026-01-01) about #tasks #task:abc"
        task = parse_tasks(body)[0]
        assert task.id == "abc"
        assert task.due is None
        assert task.title == "email me@due(2026-01-01) about #tasks"

    def test_task_tag_outside_checkbox_ignored(self):
        body = "Paragraph mentioning #task:abc\n> - [ ] quoted #task:def"
        assert parse_tasks(body) == []

    def test_bullets_and_indentation(self):
        body = "  * [X] nested #task:a\n\t+ [ ] tabbed #task:b"
        tasks = parse_tasks(body)
        assert [t.id for t in tasks] == ["a", "b"]
        assert tasks[0].is_done

    def test_colon_forms_and_case_are_accepted(self):
        task = parse_tasks("- [ ] A #task:a @due:2026-01-05 @priority(HIGH) @every:Monthly")[0]
        assert task.due == D(2026, 1, 5)
        assert task.priority == TaskPriority.HIGH
        assert task.every == TaskRecurrence.MONTHLY

    def test_invalid_date_degrades_to_none(self):
        task = parse_tasks("- [ ] A #task:a @due(2026-02-30)")[0]
        assert task.due is None
        assert task.title == "A"

    def test_crlf_body(self):
        tasks = parse_tasks("intro\r\n- [ ] A #task:a\r\n")
        assert tasks[0].title == "A"
        assert tasks[0].raw == "- [ ] A #task:a"

    def test_find_task(self):
        body = "- [ ] A #task:a\n- [ ] B #task:b"
        assert find_task(body, "b").title == "B"
        assert find_task(body, "zzz") is None


class TestStripMetadata:
    """Removing tags from text."""

    def test_strips_all_tags(self):
        text = "Ship it #task:abc @due(2026-01-01) @every(daily) @order(1000)"
        assert strip_metadata(text) == "Ship it"

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "   ",
            "Plain title",
            "Spaced    out   title",
            "A #task:x @priority(low) B",
            "me@due(2026-01-01) #tasks",
            "#task:only",
        ],
    )
    def test_idempotent(self, text):
        once = strip_metadata(text)
        assert strip_metadata(once) == once


# =============================================================================
# Construction
# =============================================================================


class TestBuildLine:
    """Canonical task line construction."""

    def test_canonical_tag_order(self):
        task_id, line = build_line(
            "Ship",
            id="abc",
            due="2026-02-01",
            priority="high",
            every="monthly",
            order=3000,
        )
        assert task_id == "abc"
        assert line == (
            "- [ ] Ship #task:abc @due(2026-02-01) @priority(high) "
            "@every(monthly) @order(3000)"
        )

    def test_generates_id(self):
        task_id, line = build_line("Ship")
        assert task_id
        assert line == f"- [ ] Ship #task:{task_id}"

    def test_empty_title_gets_placeholder(self):
        _, line = build_line("   ", id="x")
        assert line == "- [ ] New task #task:x"

    def test_done(self):
        _, line = build_line("Finished", id="x", done=True)
        assert line.startswith("- [x] Finished")

    def test_accepts_typed_values(self):
        _, line = build_line(
            "T",
            id="x",
            due=D(2026, 3, 4),
            priority=TaskPriority.URGENT,
            every=TaskRecurrence.DAILY,
            order=0,
        )
        assert line == "- [ ] T #task:x @due(2026-03-04) @priority(urgent) @every(daily) @order(0)"

    def test_round_trip(self):
        """Parsing a built line yields the inputs back."""
        task_id, line = build_line(
            "  Water plants  ", due="2026-05-01", priority="low", every="weekly", order=7
        )
        (task,) = parse_tasks(line)
        assert task.id == task_id
        assert task.title == "Water plants"
        assert task.due == D(2026, 5, 1)
        assert task.priority == TaskPriority.LOW
        assert task.every == TaskRecurrence.WEEKLY
        assert task.order == 7
        assert task.status == TaskStatus.TODO

    def test_rejects_bad_id(self):
        with pytest.raises(ValidationError):
            build_line("T", id="has space")

    def test_rejects_bad_values(self):
        with pytest.raises(ValidationError) as exc:
            build_line("T", id="x", priority="extreme")
        assert exc.value.code == ErrorCode.TASK_FIELD_INVALID
        with pytest.raises(ValidationError):
            build_line("T", id="x", order=-1)
        with pytest.raises(ValidationError):
            build_line("T", id="x", due="next tuesday")


class TestConvertCheckbox:
    """Promoting plain checkboxes to tasks."""

    def test_appends_id(self):
        task_id, line = convert_checkbox("- [ ] buy milk")
        assert line == f"- [ ] buy milk #task:{task_id}"

    def test_empty_text_gets_placeholder(self):
        task_id, line = convert_checkbox("- [ ] ")
        assert line == f"- [ ] New task #task:{task_id}"

    def test_bare_checkbox(self):
        task_id, line = convert_checkbox("  - [x]")
        assert line == f"  - [x] New task #task:{task_id}"

    def test_keeps_existing_tags_in_canonical_order(self):
        task_id, line = convert_checkbox("- [ ] pay @due(2026-01-01)")
        assert line == f"- [ ] pay #task:{task_id} @due(2026-01-01)"

    def test_already_a_task(self):
        with pytest.raises(TaskConversionError) as exc:
            convert_checkbox("- [ ] done #task:abc")
        assert exc.value.code == ErrorCode.TASK_ALREADY_CONVERTED

    def test_not_a_checkbox(self):
        with pytest.raises(TaskConversionError) as exc:
            convert_checkbox("just text")
        assert exc.value.code == ErrorCode.TASK_NOT_A_CHECKBOX

    def test_in_body(self):
        body = "# List\n- [ ] a\n- [ ] b"
        task_id, updated = convert_checkbox_in_body(body, 2)
        assert updated == f"# List\n- [ ] a\n- [ ] b #task:{task_id}"
        assert [t.id for t in parse_tasks(updated)] == [task_id]

    def test_in_body_out_of_range(self):
        with pytest.raises(ValidationError):
            convert_checkbox_in_body("- [ ] a", 5)


# =============================================================================
# Updates
# =============================================================================


class TestUpdateField:
    """Setting, replacing and removing metadata tags."""

    def test_replaces_in_place(self):
        body = "- [ ] Task #task:abc @due(2026-01-01) @priority(low)"
        updated = update_field(body, "abc", "due", "2026-02-02")
        assert updated == "- [ ] Task #task:abc @due(2026-02-02) @priority(low)"

    def test_replaces_colon_form_with_parenthesised(self):
        body = "- [ ] Task #task:abc @due:2026-01-01"
        assert update_field(body, "abc", "due", D(2026, 1, 9)) == "- [ ] Task #task:abc @due(2026-01-09)"

    def test_appends_when_absent(self):
        body = "- [ ] Task #task:abc"
        updated = update_metadata(body, "abc", due="2026-01-30", priority="low")
        assert updated == "- [ ] Task #task:abc @due(2026-01-30) @priority(low)"

    def test_inserts_at_canonical_position(self):
        body = "- [ ] Task #task:abc @order(5)"
        updated = update_field(body, "abc", "priority", "high")
        assert updated == "- [ ] Task #task:abc @priority(high) @order(5)"

    def test_removes_with_whitespace(self):
        body = "- [ ] Task #task:abc @due(2026-01-01) @priority(low)"
        assert update_field(body, "abc", "due", None) == "- [ ] Task #task:abc @priority(low)"
        assert update_field(body, "abc", "priority", None) == "- [ ] Task #task:abc @due(2026-01-01)"

    def test_remove_absent_tag_is_identity(self):
        body = "- [ ] Task #task:abc"
        assert update_field(body, "abc", "order", None) is body

    def test_unknown_task_returns_same_body(self):
        body = "- [ ] Task #task:abc\n- [ ] plain"
        assert update_field(body, "missing", "due", "2026-01-01") is body

    def test_prefix_id_does_not_match(self):
        body = "- [ ] Task #task:abcdef"
        assert update_field(body, "abc", "order", 1) is body

    def test_only_target_line_changes(self):
        lines = [
            "# Notes",
            "- [ ] plain checkbox",
            "- [ ] First #task:one",
            "  - [ ] Second #task:two @order(1)",
            "Trailing prose",
        ]
        updated = update_field("\n".join(lines), "two", "order", 2).split("\n")
        assert updated[:3] == lines[:3]
        assert updated[3] == "  - [ ] Second #task:two @order(2)"
        assert updated[4] == lines[4]

    def test_first_matching_line_only(self):
        body = "- [ ] A #task:dup\n- [ ] B #task:dup"
        updated = update_field(body, "dup", "order", 1)
        assert updated == "- [ ] A #task:dup @order(1)\n- [ ] B #task:dup"

    def test_preserves_crlf(self):
        body = "a\r\n- [ ] T #task:x\r\nb"
        assert update_field(body, "x", "order", 3) == "a\r\n- [ ] T #task:x @order(3)\r\nb"

    def test_id_cannot_be_updated(self):
        with pytest.raises(ValidationError):
            update_field("- [ ] T #task:x", "x", "id", "y")

    def test_unknown_field(self):
        with pytest.raises(ValidationError):
            update_metadata("- [ ] T #task:x", "x", colour="red")

    def test_invalid_value(self):
        with pytest.raises(ValidationError):
            update_field("- [ ] T #task:x", "x", "every", "hourly")


class TestUpdateStatusAndTitle:
    """Checkbox state and title edits."""

    def test_update_status(self):
        body = "- [ ] Task #task:abc"
        assert update_status(body, "abc", TaskStatus.DONE) == "- [x] Task #task:abc"
        assert update_status("- [X] Task #task:abc", "abc", "todo") == "- [ ] Task #task:abc"

    def test_update_status_unchanged_is_identity(self):
        body = "- [x] Task #task:abc"
        assert update_status(body, "abc", TaskStatus.DONE) is body

    def test_update_title_keeps_tags_and_state(self):
        body = "  * [x] Old words #task:abc @order(2) @due(2026-01-01)"
        updated = update_title(body, "abc", "New")
        assert updated == "  * [x] New #task:abc @due(2026-01-01) @order(2)"

    def test_update_title_strips_tags_from_new_title(self):
        body = "- [ ] Old #task:abc"
        assert update_title(body, "abc", "Sneaky #task:zzz") == "- [ ] Sneaky #task:abc"

    def test_update_title_empty(self):
        assert update_title("- [ ] Old #task:abc", "abc", "") == "- [ ] New task #task:abc"


# =============================================================================
# Recurrence
# =============================================================================


class TestToggleStatus:
    """Completing tasks, with recurring ones rescheduled."""

    def test_weekly_reschedules(self):
        body = "- [ ] Review #task:r @due(2026-01-01) @every(weekly)"
        updated = toggle_status(body, "r", TaskStatus.DONE)
        task = parse_tasks(updated)[0]
        assert task.status == TaskStatus.TODO
        assert task.due == D(2026, 1, 8)

    def test_non_recurring_completes(self):
        body = "- [ ] Once #task:o @due(2026-01-01)"
        task = parse_tasks(toggle_status(body, "o", TaskStatus.DONE))[0]
        assert task.status == TaskStatus.DONE
        assert task.due == D(2026, 1, 1)

    def test_daily(self):
        body = "- [ ] Meds #task:m @due(2026-12-31) @every(daily)"
        assert parse_tasks(toggle_status(body, "m", "done"))[0].due == D(2027, 1, 1)

    def test_monthly_clamps_day(self):
        body = "- [ ] Rent #task:r @due(2026-01-31) @every(monthly)"
        assert parse_tasks(toggle_status(body, "r", "done"))[0].due == D(2026, 2, 28)

    def test_without_due_uses_today(self):
        body = "- [ ] Water #task:w @every(daily)"
        updated = toggle_status(body, "w", TaskStatus.DONE, today=D(2026, 3, 10))
        assert updated == "- [ ] Water #task:w @due(2026-03-11) @every(daily)"

    def test_reopen(self):
        body = "- [x] Again #task:a @every(weekly)"
        assert toggle_status(body, "a", TaskStatus.TODO) == "- [ ] Again #task:a @every(weekly)"

    def test_done_recurring_task_completed_again(self):
        """A ticked recurring task is rescheduled and reopened."""
        body = "- [x] Odd #task:a @due(2026-01-01) @every(daily)"
        task = parse_tasks(toggle_status(body, "a", TaskStatus.DONE))[0]
        assert task.status == TaskStatus.TODO
        assert task.due == D(2026, 1, 2)

    def test_unknown_task(self):
        body = "- [ ] plain"
        assert toggle_status(body, "nope", TaskStatus.DONE) is body


class TestAddMonths:
    @pytest.mark.parametrize(
        "start,months,expected",
        [
            (D(2026, 1, 15), 1, D(2026, 2, 15)),
            (D(2026, 1, 31), 1, D(2026, 2, 28)),
            (D(2028, 1, 31), 1, D(2028, 2, 29)),
            (D(2026, 12, 5), 1, D(2027, 1, 5)),
            (D(2026, 3, 31), 13, D(2027, 4, 30)),
        ],
    )
    def test_add_months(self, start, months, expected):
        assert add_months(start, months) == expected
