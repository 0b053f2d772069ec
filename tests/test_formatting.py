"""Tests for message formatting and SMS segment helpers."""

from datetime import date, datetime

import pytest

from duedigest.formatting import (
    FormattingError,
    count_segments,
    format_message,
    format_preview,
    validate_message,
)
from duedigest.source import sort_due_items
from tests.helpers.fakes import make_item


class TestFormatMessage:
    """Plain-text digest rendering."""

    def test_renders_items_with_labels(self):
        items = [
            make_item("Problem Set 4", "2026-02-19T06:59:00", group_id="101"),
            make_item("Lab Report", "2026-02-20T18:00:00", group_id="12345", item_type="grading"),
        ]

        body = format_message(items, date(2026, 2, 18), {"101": "Algebra I"})

        assert body == (
            "Assignments for 2026-02-18:\n"
            "\n"
            "Course: Algebra I\n"
            "Assignment: Problem Set 4\n"
            "Type: submitting\n"
            "Due: 2026-02-19\n"
            "\n"
            "Course: 12345\n"
            "Assignment: Lab Report\n"
            "Type: grading\n"
            "Due: 2026-02-20\n"
            "\n"
        )

    def test_empty_list(self):
        assert format_message([], date(2026, 2, 18)) == "Assignments for 2026-02-18:\n\nNo assignments due.\n"

    def test_essay_example_exact_message(self):
        items = [make_item("Essay on Shakespeare", "2026-02-25T12:00:00", group_id="101")]

        body = format_message(items, date(2026, 2, 18), {"101": "English"})

        assert body == (
            "Assignments for 2026-02-18:\n\nCourse: English\nAssignment: Essay on Shakespeare\n"
            "Type: submitting\nDue: 2026-02-25\n\n"
        )

    def test_sorted_items_with_identical_ties_keep_their_order(self):
        items = [
            make_item("B", "2026-02-20T10:00:00", group_id="101"),
            make_item("A", "2026-02-18T23:59:00", group_id="202"),
            make_item("A", "2026-02-18T23:59:00", group_id="303"),
        ]

        body = format_message(sort_due_items(items), date(2026, 2, 18))

        assert body == (
            "Assignments for 2026-02-18:\n\n"
            "Course: 202\nAssignment: A\nType: submitting\nDue: 2026-02-18\n\n"
            "Course: 303\nAssignment: A\nType: submitting\nDue: 2026-02-18\n\n"
            "Course: 101\nAssignment: B\nType: submitting\nDue: 2026-02-20\n\n"
        )

    def test_keeps_given_order(self):
        """Sorting belongs to the source client."""
        items = [
            make_item("Zeta", "2026-03-01T00:00:00"),
            make_item("Alpha", "2026-02-01T00:00:00"),
        ]
        body = format_message(items, date(2026, 1, 31))
        assert body.index("Zeta") < body.index("Alpha")

    def test_callable_lookup_falls_back_to_group_id(self):
        lookup = {"7": "History"}.get
        items = [make_item("Essay", "2026-02-19T00:00:00", group_id="7"), make_item("Quiz", "2026-02-19T00:00:00", group_id="8")]

        body = format_message(items, date(2026, 2, 18), lookup)

        assert "Course: History\n" in body
        assert "Course: 8\n" in body

    def test_due_date_is_utc_calendar_date(self):
        body = format_message([make_item("Late", "2026-02-19T23:59:00")], date(2026, 2, 18))
        assert "Due: 2026-02-19\n" in body

    def test_datetime_reference_date_accepted(self):
        body = format_message([], datetime(2026, 2, 18, 22, 30))
        assert body.startswith("Assignments for 2026-02-18:")

    def test_rejects_non_items(self):
        with pytest.raises(FormattingError):
            format_message([{"title": "raw dict"}], date(2026, 2, 18))

    def test_rejects_missing_reference_date(self):
        with pytest.raises(FormattingError):
            format_message([], None)


class TestSegments:
    """SMS segment counting."""

    @pytest.mark.parametrize(
        "body,expected",
        [
            ("a" * 160, 1),
            ("a" * 161, 2),
            ("a" * 306, 2),
            ("a" * 320, 3),
            ("é" + "a" * 69, 1),
            ("é" + "a" * 99, 2),
        ],
    )
    def test_count_segments(self, body, expected):
        assert count_segments(body) == expected

    def test_validate_message_ok(self):
        result = validate_message("Assignments for 2026-02-18:\n")
        assert result.valid
        assert result.segments == 1
        assert result.errors == []

    def test_validate_message_empty(self):
        result = validate_message("   ")
        assert not result.valid
        assert "Message cannot be empty" in result.errors

    def test_validate_message_too_long(self):
        result = validate_message("a" * 1000, max_segments=5)
        assert not result.valid
        assert result.segments == 7
        assert "maximum of 5" in result.errors[0]

    def test_format_preview(self):
        assert format_preview("short") == "short"
        preview = format_preview("x" * 200, max_length=50)
        assert len(preview) == 50
        assert preview.endswith("...")
