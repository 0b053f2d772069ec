"""Control surface: the operations an account-management front end calls.

Every method opens its own session, so a ControlService instance is safe to
share between request handlers.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, ContextManager, Optional

from sqlalchemy.orm import Session

from duedigest.config.models import SchedulerConfig
from duedigest.credentials import DatabaseCredentialProvider
from duedigest.domain.models import (
    DeliveryStatus,
    OccurrenceRecord,
    Owner,
    Recurrence,
    Subject,
)
from duedigest.delivery import is_valid_e164
from duedigest.executor import FiringResult
from duedigest.formatting import count_segments, format_message, format_preview
from duedigest.logging import get_logger
from duedigest.persistence import (
    LabelRepository,
    OccurrenceRepository,
    OwnerRepository,
    RecordNotFoundError,
    SubjectRepository,
    get_session,
)
from duedigest.scheduler import QueueStats, SchedulerService
from duedigest.source import CanvasSourceClient, SourceError
from duedigest.utils.timestamps import local_date, utc_now

logger = get_logger(__name__, component="control")


class ControlError(Exception):
    """Invalid request from the control surface (unknown ids, bad input)."""

    pass


@dataclass
class MessagePreview:
    """What a firing would send right now, without sending it."""

    body: str
    preview: str
    item_count: int
    segments: int


class ControlService:
    """Owner/subject management, manual firing, history and status callbacks."""

    def __init__(
        self,
        source_client: CanvasSourceClient,
        credentials: DatabaseCredentialProvider,
        scheduler: SchedulerService,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        defaults: Optional[SchedulerConfig] = None,
    ):
        self.source_client = source_client
        self.credentials = credentials
        self.scheduler = scheduler
        self.defaults = defaults or SchedulerConfig()
        self._session_factory = session_factory

    def register_owner(
        self,
        phone: str,
        name: str = "",
        timezone: Optional[str] = None,
        send_time: Optional[str] = None,
        send_days: Optional[str] = None,
        include_subject_in_sms: bool = False,
        owner_id: Optional[str] = None,
    ) -> Owner:
        """Create (or overwrite) an owner after validating phone and schedule.

        Schedule fields left as None take the configured defaults.
        """
        if not is_valid_e164(phone):
            raise ControlError(f"Invalid phone number (must be E.164): {phone!r}")
        recurrence = self._recurrence(
            send_time or self.defaults.default_send_time,
            send_days or self.defaults.default_send_days,
            timezone or self.defaults.default_timezone,
        )

        owner = Owner(
            id=owner_id or str(uuid.uuid4()),
            name=name,
            phone=phone,
            timezone=recurrence.timezone,
            send_time=recurrence.send_time,
            send_days=recurrence.send_days,
            include_subject_in_sms=include_subject_in_sms,
        )
        with self._session_factory() as session:
            owner = OwnerRepository(session).upsert(owner)
        logger.info("Owner registered", extra={"event": "control.owner.registered", "owner_id": owner.id})
        return owner

    def add_subject(
        self,
        owner_id: str,
        name: str,
        source_domain: str,
        token: str,
        phone: Optional[str] = None,
        subject_id: Optional[str] = None,
    ) -> Subject:
        """Validate the token, store it encrypted, link, sync labels, schedule.

        Raises:
            ControlError: Unknown owner, invalid phone, or rejected token
        """
        owner = self._require_owner(owner_id)
        if phone is not None and not is_valid_e164(phone):
            raise ControlError(f"Invalid phone number (must be E.164): {phone!r}")

        try:
            profile = self.source_client.validate_token(source_domain, token)
        except SourceError as e:
            raise ControlError(f"Source token rejected: {e}") from e

        subject = Subject(
            id=subject_id or str(uuid.uuid4()),
            name=name,
            source_domain=source_domain,
            source_user_id=str(profile["id"]) if profile.get("id") is not None else None,
            phone=phone,
            is_active=True,
        )
        with self._session_factory() as session:
            subject = SubjectRepository(session).upsert(subject)
            SubjectRepository(session).link(owner.id, subject.id)
        self.credentials.store(subject.id, token)

        self.sync_labels(subject.id)
        self.scheduler.registry.install(owner.id, subject.id, owner.recurrence)

        logger.info(
            "Subject added",
            extra={"event": "control.subject.added", "owner_id": owner.id, "subject_id": subject.id},
        )
        return subject

    def remove_subject(self, owner_id: str, subject_id: str) -> bool:
        """Deactivate the link and remove its schedule. False if it was not active."""
        with self._session_factory() as session:
            was_linked = SubjectRepository(session).unlink(owner_id, subject_id)
        self.scheduler.registry.remove(owner_id, subject_id)
        logger.info(
            "Subject removed",
            extra={
                "event": "control.subject.removed",
                "owner_id": owner_id,
                "subject_id": subject_id,
                "was_linked": was_linked,
            },
        )
        return was_linked

    def sync_labels(self, subject_id: str) -> int:
        """Refresh the subject's group labels from the source."""
        subject = self._require_subject(subject_id)
        labels = self.source_client.sync_labels(subject)
        with self._session_factory() as session:
            return LabelRepository(session).upsert_many(subject.id, labels)

    def update_preferences(
        self,
        owner_id: str,
        phone: Optional[str] = None,
        timezone: Optional[str] = None,
        send_time: Optional[str] = None,
        send_days: Optional[str] = None,
        include_subject_in_sms: Optional[bool] = None,
    ) -> Owner:
        """Change delivery preferences and re-install every affected trigger."""
        current = self._require_owner(owner_id)
        if phone is not None and not is_valid_e164(phone):
            raise ControlError(f"Invalid phone number (must be E.164): {phone!r}")
        recurrence = self._recurrence(
            send_time or current.send_time,
            send_days or current.send_days,
            timezone or current.timezone,
        )

        with self._session_factory() as session:
            try:
                owner = OwnerRepository(session).update_preferences(
                    owner_id,
                    phone=phone,
                    timezone=recurrence.timezone,
                    send_time=recurrence.send_time,
                    send_days=recurrence.send_days,
                    include_subject_in_sms=include_subject_in_sms,
                )
            except RecordNotFoundError as e:
                raise ControlError(str(e)) from e
            subjects = SubjectRepository(session).list_for_owner(owner_id)

        for subject in subjects:
            self.scheduler.registry.install(owner.id, subject.id, recurrence)

        logger.info(
            "Preferences updated",
            extra={
                "event": "control.preferences.updated",
                "owner_id": owner_id,
                "rescheduled": len(subjects),
            },
        )
        return owner

    def fire_now(self, owner_id: str, subject_id: str, wait: bool = False) -> str | FiringResult:
        """Run a firing outside the schedule through the normal pipeline.

        With ``wait=False`` the firing is queued on the worker pool and its id
        returned; with ``wait=True`` it runs in the calling thread and the
        result is returned.
        """
        self._require_owner(owner_id)
        self._require_subject(subject_id)
        if wait:
            return self.scheduler.run_now(owner_id, subject_id)
        return self.scheduler.trigger_now(owner_id, subject_id)

    def preview(self, owner_id: str, subject_id: str, max_length: int = 160) -> MessagePreview:
        """Fetch and format the current digest without sending anything."""
        owner = self._require_owner(owner_id)
        subject = self._require_subject(subject_id)

        items = self.source_client.fetch(subject)
        with self._session_factory() as session:
            labels = LabelRepository(session).get_map(subject.id)
        body = format_message(items, local_date(owner.timezone, utc_now()), labels)
        return MessagePreview(
            body=body,
            preview=format_preview(body, max_length),
            item_count=len(items),
            segments=count_segments(body),
        )

    def history(self, owner_id: str, subject_id: Optional[str] = None, limit: int = 50) -> list[OccurrenceRecord]:
        with self._session_factory() as session:
            return OccurrenceRepository(session).list_for_owner(owner_id, limit=limit, subject_id=subject_id)

    def subject_history(self, subject_id: str, limit: int = 50) -> list[OccurrenceRecord]:
        """Records for a subject across every owner it is linked to, newest first."""
        with self._session_factory() as session:
            return OccurrenceRepository(session).list_for_subject(subject_id, limit=limit)

    def last_occurrence(self, owner_id: str, subject_id: str) -> Optional[OccurrenceRecord]:
        with self._session_factory() as session:
            return OccurrenceRepository(session).latest_for_pair(owner_id, subject_id)

    def delivery_counts(self, since: Optional[datetime] = None) -> dict[str, int]:
        """Occurrence records per delivery status, optionally only those updated since ``since``."""
        with self._session_factory() as session:
            return OccurrenceRepository(session).count_by_status(since=since)

    def queue_stats(self) -> QueueStats:
        return self.scheduler.queue_stats()

    def record_delivery_status(self, provider_id: str, status: str, error: Optional[str] = None) -> bool:
        """Apply a provider status callback. Unknown statuses are ignored.

        Provider states ``queued``/``sending`` are not recorded; ``sent``,
        ``delivered``, ``failed`` and ``undelivered`` map onto the
        occurrence status.
        """
        mapped = _PROVIDER_STATUS_MAP.get(status.lower())
        if mapped is None:
            logger.debug(
                f"Ignoring provider status {status}",
                extra={"event": "control.delivery_status.ignored", "provider_id": provider_id},
            )
            return False
        with self._session_factory() as session:
            return OccurrenceRepository(session).update_status_by_provider_id(provider_id, mapped, error)

    def _require_owner(self, owner_id: str) -> Owner:
        with self._session_factory() as session:
            owner = OwnerRepository(session).get(owner_id)
        if owner is None:
            raise ControlError(f"Unknown owner: {owner_id}")
        return owner

    def _require_subject(self, subject_id: str) -> Subject:
        with self._session_factory() as session:
            subject = SubjectRepository(session).get(subject_id)
        if subject is None:
            raise ControlError(f"Unknown subject: {subject_id}")
        return subject

    @staticmethod
    def _recurrence(send_time: str, send_days: str, timezone: str) -> Recurrence:
        try:
            return Recurrence.from_preferences(send_time, send_days, timezone)
        except ValueError as e:
            raise ControlError(f"Invalid schedule: {e}") from e


_PROVIDER_STATUS_MAP = {
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "failed": DeliveryStatus.FAILED,
    "undelivered": DeliveryStatus.FAILED,
}
