"""Pure helpers for ordering fetched DueItems."""

from typing import Iterable, List

from duedigest.domain.models import DueItem


def sort_due_items(items: Iterable[DueItem]) -> List[DueItem]:
    """Order by due instant, ties broken by title. Stable for full ties."""
    return sorted(items, key=lambda item: (item.due_at, item.title))
