"""Canvas LMS source client."""

from __future__ import annotations

from typing import Any, Optional

from duedigest.domain.models import DueItem, Subject
from duedigest.logging import get_logger
from duedigest.utils.timestamps import parse_iso_datetime

from .base import BaseSourceClient
from .exceptions import AuthError, SourceResponseError
from .normalization import sort_due_items

logger = get_logger(__name__, component="source")


class CanvasSourceClient(BaseSourceClient):
    """Client for the Canvas LMS REST API.

    API Details:
        To-do list: GET https://{domain}/api/v1/users/self/todo
        Courses:    GET https://{domain}/api/v1/courses?enrollment_state=active
        Profile:    GET https://{domain}/api/v1/users/self
        Authentication: ``Authorization: Bearer <token>``
    """

    CLIENT_NAME = "canvas"

    def __init__(self, credentials, timeout: int = 10, user_agent: str = "duedigest/1.0", per_page: int = 100):
        super().__init__(credentials, timeout=timeout, user_agent=user_agent)
        self.per_page = per_page

    def fetch(self, subject: Subject) -> list[DueItem]:
        """Fetch the subject's to-do items that carry a due date.

        Items without ``assignment.due_at`` are dropped. Items that are
        present but malformed are skipped with a warning so one bad entry
        does not hide the rest.

        Returns:
            DueItems sorted by (due_at, title)
        """
        url = self._url(subject.source_domain, "/api/v1/users/self/todo")
        logger.info(
            "Fetching to-do items",
            extra={"event": "source.fetch.started", "client": self.CLIENT_NAME, "subject_id": subject.id},
        )

        data = self._authorized_get(subject, url)
        if not isinstance(data, list):
            raise SourceResponseError(
                f"Expected JSON array from to-do endpoint, got {type(data).__name__}", url=url
            )

        items = []
        for raw in data:
            try:
                item = self._transform_item(raw)
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning(
                    "Skipping malformed to-do item",
                    extra={
                        "event": "source.item.skipped",
                        "client": self.CLIENT_NAME,
                        "subject_id": subject.id,
                        "error": str(e),
                    },
                )
                continue
            if item is not None:
                items.append(item)

        logger.info(
            "Fetched to-do items",
            extra={
                "event": "source.fetch.completed",
                "client": self.CLIENT_NAME,
                "subject_id": subject.id,
                "raw_count": len(data),
                "count": len(items),
            },
        )
        return sort_due_items(items)

    def sync_labels(self, subject: Subject) -> dict[str, str]:
        """Return active course id -> course name for the subject."""
        url = self._url(subject.source_domain, "/api/v1/courses")
        params = {"enrollment_state": "active", "per_page": self.per_page}

        data = self._authorized_get(subject, url, params=params)
        if not isinstance(data, list):
            raise SourceResponseError(
                f"Expected JSON array from courses endpoint, got {type(data).__name__}", url=url
            )

        labels = {}
        for course in data:
            if isinstance(course, dict) and course.get("id") is not None and course.get("name"):
                labels[str(course["id"])] = str(course["name"])

        logger.info(
            "Synced course labels",
            extra={"event": "source.labels.synced", "subject_id": subject.id, "count": len(labels)},
        )
        return labels

    def validate_token(self, domain: str, token: str) -> dict[str, Any]:
        """Check a token before it is stored; returns the user profile.

        Raises:
            AuthError: If the source rejects the token
        """
        url = self._url(domain, "/api/v1/users/self")
        profile = self._make_request(url, token)
        if not isinstance(profile, dict):
            raise SourceResponseError("Expected JSON object from profile endpoint", url=url)
        logger.info(
            "Source token validated",
            extra={"event": "source.token.validated", "source_user_id": profile.get("id")},
        )
        return profile

    def _authorized_get(self, subject: Subject, url: str, params: Optional[dict] = None) -> Any:
        token = self._token_for(subject)
        try:
            return self._make_request(url, token, params=params)
        except AuthError:
            self.credentials.mark_invalid(subject.id)
            raise

    @staticmethod
    def _transform_item(raw: dict) -> Optional[DueItem]:
        assignment = raw.get("assignment") or {}
        due_at = parse_iso_datetime(assignment.get("due_at"))
        if due_at is None:
            return None

        group_id = assignment.get("course_id", raw.get("course_id"))
        if group_id is None:
            raise ValueError("item has no course id")

        return DueItem(
            item_type=str(raw.get("type") or ""),
            title=str(assignment["name"]),
            due_at=due_at,
            group_id=group_id,
        )

    @staticmethod
    def _url(domain: str, path: str) -> str:
        domain = domain.strip().rstrip("/")
        if domain.startswith("https://"):
            domain = domain[len("https://"):]
        return f"https://{domain}{path}"
