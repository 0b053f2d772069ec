"""Data access layer (repositories) for persistence operations.

Repositories take a session, return domain models rather than ORM models,
and wrap SQLAlchemy failures in PersistenceError.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from duedigest.domain.models import (
    DeliveryStatus,
    OccurrenceRecord,
    Owner,
    Recipient,
    Subject,
)
from duedigest.utils.timestamps import format_db_timestamp, utc_now

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import (
    CredentialModel,
    LabelModel,
    OccurrenceModel,
    OwnerModel,
    OwnerSubjectModel,
    SubjectModel,
)

logger = logging.getLogger(__name__)


class OwnerRepository:
    """Repository for owners and their delivery preferences."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, owner_id: str) -> Optional[Owner]:
        try:
            model = self.session.get(OwnerModel, owner_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving owner {owner_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve owner: {e}") from e

    def upsert(self, owner: Owner) -> Owner:
        """Insert a new owner or overwrite an existing one's fields."""
        try:
            model = self.session.get(OwnerModel, owner.id)
            if model is None:
                model = OwnerModel(id=owner.id, created_at=format_db_timestamp(utc_now()))
                self.session.add(model)

            model.name = owner.name
            model.phone = owner.phone
            model.timezone = owner.timezone
            model.send_time = owner.send_time
            model.send_days = owner.send_days
            model.include_subject_in_sms = owner.include_subject_in_sms
            self.session.flush()
            return model.to_domain()

        except SQLAlchemyError as e:
            logger.error(f"Error upserting owner {owner.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert owner: {e}") from e

    def update_preferences(self, owner_id: str, **changes) -> Owner:
        """Apply the given preference fields to an existing owner.

        Accepted keys: ``phone``, ``timezone``, ``send_time``, ``send_days``,
        ``include_subject_in_sms``. Keys whose value is None are left alone.

        Raises:
            RecordNotFoundError: If the owner does not exist
        """
        allowed = {"phone", "timezone", "send_time", "send_days", "include_subject_in_sms"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown preference fields: {', '.join(sorted(unknown))}")

        try:
            model = self.session.get(OwnerModel, owner_id)
            if model is None:
                raise RecordNotFoundError(f"Owner {owner_id} not found")

            for field, value in changes.items():
                if value is not None:
                    setattr(model, field, value)
            self.session.flush()
            return model.to_domain()

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating preferences for owner {owner_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update preferences: {e}") from e


class SubjectRepository:
    """Repository for subjects and their links to owners."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, subject_id: str) -> Optional[Subject]:
        try:
            model = self.session.get(SubjectModel, subject_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving subject {subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve subject: {e}") from e

    def upsert(self, subject: Subject) -> Subject:
        try:
            model = self.session.get(SubjectModel, subject.id)
            if model is None:
                model = SubjectModel(id=subject.id, created_at=format_db_timestamp(utc_now()))
                self.session.add(model)

            model.name = subject.name
            model.source_domain = subject.source_domain
            model.source_user_id = subject.source_user_id
            model.phone = subject.phone
            model.is_active = subject.is_active
            self.session.flush()
            return model.to_domain()

        except SQLAlchemyError as e:
            logger.error(f"Error upserting subject {subject.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert subject: {e}") from e

    def link(self, owner_id: str, subject_id: str) -> None:
        """Create or reactivate the owner/subject link."""
        now = format_db_timestamp(utc_now())
        try:
            link = self.session.get(OwnerSubjectModel, {"owner_id": owner_id, "subject_id": subject_id})
            if link is None:
                self.session.add(
                    OwnerSubjectModel(
                        owner_id=owner_id,
                        subject_id=subject_id,
                        is_active=True,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                link.is_active = True
                link.updated_at = now
            self.session.flush()

        except IntegrityError as e:
            logger.error(f"Integrity error linking {owner_id}/{subject_id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to link owner and subject: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error linking {owner_id}/{subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to link owner and subject: {e}") from e

    def unlink(self, owner_id: str, subject_id: str) -> bool:
        """Deactivate the link. Returns False if there was no active link."""
        try:
            link = self.session.get(OwnerSubjectModel, {"owner_id": owner_id, "subject_id": subject_id})
            if link is None or not link.is_active:
                return False
            link.is_active = False
            link.updated_at = format_db_timestamp(utc_now())
            self.session.flush()
            return True

        except SQLAlchemyError as e:
            logger.error(f"Error unlinking {owner_id}/{subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to unlink owner and subject: {e}") from e

    def is_linked(self, owner_id: str, subject_id: str) -> bool:
        try:
            link = self.session.get(OwnerSubjectModel, {"owner_id": owner_id, "subject_id": subject_id})
            return bool(link and link.is_active)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read owner/subject link: {e}") from e

    def list_for_owner(self, owner_id: str) -> List[Subject]:
        """Active subjects linked to ``owner_id``."""
        try:
            stmt = (
                select(SubjectModel)
                .join(OwnerSubjectModel, OwnerSubjectModel.subject_id == SubjectModel.id)
                .where(
                    OwnerSubjectModel.owner_id == owner_id,
                    OwnerSubjectModel.is_active.is_(True),
                    SubjectModel.is_active.is_(True),
                )
                .order_by(SubjectModel.id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]

        except SQLAlchemyError as e:
            logger.error(f"Error listing subjects for owner {owner_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list subjects: {e}") from e

    def list_active_pairs(self) -> List[tuple[Owner, Subject]]:
        """Every (owner, subject) pair that should currently have a schedule."""
        try:
            stmt = (
                select(OwnerModel, SubjectModel)
                .join(OwnerSubjectModel, OwnerSubjectModel.owner_id == OwnerModel.id)
                .join(SubjectModel, OwnerSubjectModel.subject_id == SubjectModel.id)
                .where(OwnerSubjectModel.is_active.is_(True), SubjectModel.is_active.is_(True))
                .order_by(OwnerModel.id, SubjectModel.id)
            )
            return [
                (owner.to_domain(), subject.to_domain())
                for owner, subject in self.session.execute(stmt).all()
            ]

        except SQLAlchemyError as e:
            logger.error(f"Error listing active pairs: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list active pairs: {e}") from e


class LabelRepository:
    """Repository for group labels (e.g. course id -> course name)."""

    def __init__(self, session: Session):
        self.session = session

    def get_map(self, subject_id: str) -> dict[str, str]:
        try:
            stmt = select(LabelModel).where(
                LabelModel.subject_id == subject_id, LabelModel.is_active.is_(True)
            )
            return {
                label.group_id: label.display_name
                for label in self.session.execute(stmt).scalars().all()
            }
        except SQLAlchemyError as e:
            logger.error(f"Error reading labels for subject {subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read labels: {e}") from e

    def upsert_many(self, subject_id: str, labels: dict[str, str]) -> int:
        """Insert or refresh labels; returns the number written."""
        now = format_db_timestamp(utc_now())
        try:
            for group_id, display_name in labels.items():
                key = {"subject_id": subject_id, "group_id": str(group_id)}
                model = self.session.get(LabelModel, key)
                if model is None:
                    model = LabelModel(subject_id=subject_id, group_id=str(group_id))
                    self.session.add(model)
                model.display_name = display_name
                model.is_active = True
                model.synced_at = now
            self.session.flush()
            return len(labels)

        except SQLAlchemyError as e:
            logger.error(f"Error upserting labels for subject {subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert labels: {e}") from e


class CredentialRepository:
    """Repository for encrypted source credentials.

    Only ciphertext passes through here; encryption lives in
    :mod:`duedigest.credentials`.
    """

    def __init__(self, session: Session):
        self.session = session

    def store(self, subject_id: str, encrypted_token: str) -> None:
        """Save a (re-)validated credential, marking it valid."""
        now = format_db_timestamp(utc_now())
        try:
            model = self.session.get(CredentialModel, subject_id)
            if model is None:
                model = CredentialModel(subject_id=subject_id, created_at=now)
                self.session.add(model)
            model.encrypted_token = encrypted_token
            model.is_valid = True
            model.last_verified_at = now
            self.session.flush()

        except SQLAlchemyError as e:
            logger.error(f"Error storing credential for subject {subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to store credential: {e}") from e

    def get_encrypted_token(self, subject_id: str) -> Optional[str]:
        try:
            model = self.session.get(CredentialModel, subject_id)
            return model.encrypted_token if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read credential: {e}") from e

    def is_valid(self, subject_id: str) -> bool:
        """False when the credential is missing or was rejected by the source."""
        try:
            model = self.session.get(CredentialModel, subject_id)
            return bool(model and model.is_valid)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read credential: {e}") from e

    def mark_invalid(self, subject_id: str) -> bool:
        try:
            model = self.session.get(CredentialModel, subject_id)
            if model is None:
                return False
            model.is_valid = False
            self.session.flush()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error invalidating credential for subject {subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark credential invalid: {e}") from e


class OccurrenceRepository:
    """Repository for occurrence records (the delivery log).

    At most one record exists per (firing_id, recipient_address). Status
    writes only move forward; a write that would move a record backwards is
    ignored and logged, never raised.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, record_id: int) -> Optional[OccurrenceRecord]:
        try:
            model = self.session.get(OccurrenceModel, record_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve occurrence: {e}") from e

    def get_for_recipient(self, firing_id: str, recipient_address: str) -> Optional[OccurrenceRecord]:
        model = self._find(firing_id, recipient_address)
        return model.to_domain() if model else None

    def list_for_firing(self, firing_id: str) -> List[OccurrenceRecord]:
        try:
            stmt = (
                select(OccurrenceModel)
                .where(OccurrenceModel.firing_id == firing_id)
                .order_by(OccurrenceModel.id)
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list occurrences for firing: {e}") from e

    def begin_attempt(
        self,
        firing_id: str,
        owner_id: str,
        subject_id: str,
        recipient: Recipient,
        message_body: str,
        item_count: int,
    ) -> OccurrenceRecord:
        """Open (or re-open) the record for one recipient of one firing.

        Inserts a ``pending`` record the first time. On later attempts the
        existing record is returned with ``attempts`` incremented and the
        latest message body; a record that is already final is returned
        untouched.

        Raises:
            PersistenceError: If database error occurs
        """
        now = format_db_timestamp(utc_now())
        try:
            existing = self._find(firing_id, recipient.address)
            if existing is None:
                try:
                    with self.session.begin_nested():
                        model = OccurrenceModel(
                            firing_id=firing_id,
                            owner_id=owner_id,
                            subject_id=subject_id,
                            recipient_address=recipient.address,
                            recipient_role=recipient.role.value,
                            message_body=message_body,
                            item_count=item_count,
                            status=DeliveryStatus.PENDING.value,
                            attempts=1,
                            created_at=now,
                            updated_at=now,
                        )
                        self.session.add(model)
                    return model.to_domain()
                except IntegrityError:
                    # Concurrent insert for the same firing+recipient won the race.
                    logger.debug(
                        f"Occurrence for {firing_id}/{recipient.address} already exists",
                        extra={"event": "occurrence.insert.conflict", "firing_id": firing_id},
                    )
                    existing = self._find(firing_id, recipient.address)
                    if existing is None:
                        raise

            if existing.status == DeliveryStatus.PENDING.value:
                existing.attempts = (existing.attempts or 0) + 1
                existing.message_body = message_body
                existing.item_count = item_count
                existing.updated_at = now
                self.session.flush()
            return existing.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error opening occurrence {firing_id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to record occurrence: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error opening occurrence {firing_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record occurrence: {e}") from e

    def mark_sent(self, record_id: int, provider_id: str) -> bool:
        return self._transition_by_id(record_id, DeliveryStatus.SENT, provider_id=provider_id, error=None)

    def mark_failed(self, record_id: int, error: str) -> bool:
        return self._transition_by_id(record_id, DeliveryStatus.FAILED, error=error)

    def update_status_by_provider_id(
        self, provider_id: str, status: DeliveryStatus, error: Optional[str] = None
    ) -> bool:
        """Apply a provider status callback (e.g. ``delivered``).

        Returns False when no record carries ``provider_id`` or the
        transition is not allowed.
        """
        try:
            stmt = select(OccurrenceModel).where(OccurrenceModel.provider_id == provider_id)
            model = self.session.execute(stmt).scalars().first()
            if model is None:
                logger.warning(
                    f"No occurrence for provider id {provider_id}",
                    extra={"event": "occurrence.callback.unknown", "provider_id": provider_id},
                )
                return False
            fields = {"error": error} if error else {}
            return self._apply(model, DeliveryStatus(status), **fields)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to apply provider status: {e}") from e

    def record_terminal_failure(
        self,
        firing_id: str,
        owner_id: str,
        subject_id: str,
        recipient: Recipient,
        error: str,
        message_body: str = "",
        item_count: int = 0,
    ) -> OccurrenceRecord:
        """Leave exactly one ``failed`` record for the primary recipient.

        Used when the firing never reached dispatch (rejected credential,
        exhausted retries, bad source response). An existing pending record
        is failed in place with its body and attempt count kept; an existing
        final record is left as it is.
        """
        existing = self._find(firing_id, recipient.address)
        if existing is None:
            record = self.begin_attempt(firing_id, owner_id, subject_id, recipient, message_body, item_count)
        else:
            record = existing.to_domain()
        if record.status is DeliveryStatus.PENDING:
            self.mark_failed(record.id, error)
            record = self.get(record.id)
        return record

    def list_for_owner(
        self, owner_id: str, limit: int = 50, subject_id: Optional[str] = None
    ) -> List[OccurrenceRecord]:
        """Newest first."""
        try:
            stmt = select(OccurrenceModel).where(OccurrenceModel.owner_id == owner_id)
            if subject_id is not None:
                stmt = stmt.where(OccurrenceModel.subject_id == subject_id)
            stmt = stmt.order_by(OccurrenceModel.created_at.desc(), OccurrenceModel.id.desc()).limit(limit)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing occurrences for owner {owner_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list occurrences: {e}") from e

    def list_for_subject(self, subject_id: str, limit: int = 50) -> List[OccurrenceRecord]:
        try:
            stmt = (
                select(OccurrenceModel)
                .where(OccurrenceModel.subject_id == subject_id)
                .order_by(OccurrenceModel.created_at.desc(), OccurrenceModel.id.desc())
                .limit(limit)
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list occurrences: {e}") from e

    def latest_for_pair(self, owner_id: str, subject_id: str) -> Optional[OccurrenceRecord]:
        records = self.list_for_owner(owner_id, limit=1, subject_id=subject_id)
        return records[0] if records else None

    def count_by_status(self, since: Optional[datetime] = None) -> dict[str, int]:
        try:
            stmt = select(OccurrenceModel.status, func.count()).group_by(OccurrenceModel.status)
            if since is not None:
                stmt = stmt.where(OccurrenceModel.updated_at >= format_db_timestamp(since))
            counts = {status.value: 0 for status in DeliveryStatus}
            for status, count in self.session.execute(stmt).all():
                counts[status] = count
            return counts
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count occurrences: {e}") from e

    def cleanup_older_than(self, cutoff: datetime, statuses: Iterable[DeliveryStatus]) -> int:
        """Delete records with one of ``statuses`` created before ``cutoff``."""
        status_values = [DeliveryStatus(s).value for s in statuses]
        try:
            stmt = delete(OccurrenceModel).where(
                OccurrenceModel.created_at < format_db_timestamp(cutoff),
                OccurrenceModel.status.in_(status_values),
            )
            result = self.session.execute(stmt)
            self.session.flush()
            deleted_count = result.rowcount
            logger.info(
                f"Cleaned up {deleted_count} occurrence records",
                extra={"event": "occurrence.cleanup", "statuses": status_values, "deleted": deleted_count},
            )
            return deleted_count
        except SQLAlchemyError as e:
            logger.error(f"Error cleaning up occurrences: {e}", exc_info=True)
            raise PersistenceError(f"Failed to cleanup occurrences: {e}") from e

    def _find(self, firing_id: str, recipient_address: str) -> Optional[OccurrenceModel]:
        try:
            stmt = select(OccurrenceModel).where(
                OccurrenceModel.firing_id == firing_id,
                OccurrenceModel.recipient_address == recipient_address,
            )
            return self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve occurrence: {e}") from e

    def _transition_by_id(self, record_id: int, status: DeliveryStatus, **fields) -> bool:
        try:
            model = self.session.get(OccurrenceModel, record_id)
            if model is None:
                raise RecordNotFoundError(f"Occurrence {record_id} not found")
            return self._apply(model, status, **fields)
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating occurrence {record_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update occurrence: {e}") from e

    def _apply(self, model: OccurrenceModel, status: DeliveryStatus, **fields) -> bool:
        current = DeliveryStatus(model.status)
        if current is status:
            return True
        if not DeliveryStatus.can_transition(current, status):
            logger.warning(
                f"Ignoring occurrence transition {current.value} -> {status.value}",
                extra={
                    "event": "occurrence.transition.rejected",
                    "occurrence_id": model.id,
                    "firing_id": model.firing_id,
                    "from_status": current.value,
                    "to_status": status.value,
                },
            )
            return False

        model.status = status.value
        for field, value in fields.items():
            setattr(model, field, value)
        model.updated_at = format_db_timestamp(utc_now())
        self.session.flush()
        return True
