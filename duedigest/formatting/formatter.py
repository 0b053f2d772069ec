"""Render fetched due items into the plain-text SMS body.

Output for two items::

    Assignments for 2026-02-18:

    Course: Algebra I
    Assignment: Problem Set 4
    Type: submitting
    Due: 2026-02-19

    Course: 12345
    ...

Items are rendered in the order given; sorting belongs to the source client.
"""

from collections.abc import Mapping
from datetime import date, datetime
from typing import Callable, Optional, Sequence, Union

from duedigest.domain.models import DueItem

LabelLookup = Union[Mapping[str, str], Callable[[str], Optional[str]]]

EMPTY_LINE = "No assignments due."


class FormattingError(Exception):
    """Input the formatter cannot render; indicates a programming error upstream."""

    pass


def format_message(
    items: Sequence[DueItem],
    reference_date: date,
    label_lookup: Optional[LabelLookup] = None,
) -> str:
    """Build the SMS body for ``items`` as of ``reference_date``.

    Args:
        items: Due items, already sorted
        reference_date: Date shown in the header (the owner's local date)
        label_lookup: Mapping or callable from group id to display name;
            unresolved ids are shown as-is

    Raises:
        FormattingError: If an item is not a DueItem or the date is missing
    """
    if isinstance(reference_date, datetime):
        reference_date = reference_date.date()
    if not isinstance(reference_date, date):
        raise FormattingError(f"reference_date must be a date, got {type(reference_date).__name__}")

    lines = [f"Assignments for {reference_date.isoformat()}:", ""]

    if not items:
        lines.append(EMPTY_LINE)
        return "\n".join(lines) + "\n"

    resolve = _resolver(label_lookup)
    for item in items:
        if not isinstance(item, DueItem):
            raise FormattingError(f"Cannot format {type(item).__name__}; expected DueItem")
        lines.extend(
            [
                f"Course: {resolve(item.group_id)}",
                f"Assignment: {item.title}",
                f"Type: {item.item_type}",
                f"Due: {item.due_date.isoformat()}",
                "",
            ]
        )

    return "\n".join(lines) + "\n"


def _resolver(label_lookup: Optional[LabelLookup]) -> Callable[[str], str]:
    if label_lookup is None:
        return lambda group_id: group_id
    if isinstance(label_lookup, Mapping):
        return lambda group_id: label_lookup.get(group_id) or group_id
    return lambda group_id: label_lookup(group_id) or group_id
