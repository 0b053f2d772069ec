"""Database schema definition and ORM models.

Owners, subjects and the link between them, encrypted source credentials,
group labels (course names), and the occurrence log. Timestamps are stored
as ISO 8601 strings with a ``Z`` suffix so they sort lexically.
"""

import logging

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from duedigest.domain.models import (
    DeliveryStatus,
    OccurrenceRecord,
    Owner,
    RecipientRole,
    Subject,
)
from duedigest.utils.timestamps import format_db_timestamp, parse_db_timestamp

logger = logging.getLogger(__name__)

Base = declarative_base()


class OwnerModel(Base):
    """ORM model for owners table."""

    __tablename__ = "owners"

    id = Column(String(64), primary_key=True, nullable=False)
    name = Column(String(255), nullable=False, default="")
    phone = Column(String(20), nullable=True)
    timezone = Column(String(64), nullable=False)
    send_time = Column(String(8), nullable=False)
    send_days = Column(String(32), nullable=False)
    include_subject_in_sms = Column(Boolean, nullable=False, default=False)
    created_at = Column(String(50), nullable=False)

    def to_domain(self) -> Owner:
        return Owner(
            id=self.id,
            name=self.name,
            phone=self.phone,
            timezone=self.timezone,
            send_time=self.send_time,
            send_days=self.send_days,
            include_subject_in_sms=bool(self.include_subject_in_sms),
        )


class SubjectModel(Base):
    """ORM model for subjects table (monitored source accounts)."""

    __tablename__ = "subjects"

    id = Column(String(64), primary_key=True, nullable=False)
    name = Column(String(255), nullable=False)
    source_domain = Column(String(255), nullable=False)
    source_user_id = Column(String(64), nullable=True)
    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(50), nullable=False)

    def to_domain(self) -> Subject:
        return Subject(
            id=self.id,
            name=self.name,
            source_domain=self.source_domain,
            source_user_id=self.source_user_id,
            phone=self.phone,
            is_active=bool(self.is_active),
        )


class OwnerSubjectModel(Base):
    """Link between an owner and a subject; one schedule per active link."""

    __tablename__ = "owner_subjects"

    owner_id = Column(String(64), ForeignKey("owners.id", ondelete="CASCADE"), primary_key=True)
    subject_id = Column(String(64), ForeignKey("subjects.id", ondelete="CASCADE"), primary_key=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_owner_subjects_active", "is_active"),)


class CredentialModel(Base):
    """Encrypted source access token for one subject."""

    __tablename__ = "subject_credentials"

    subject_id = Column(String(64), ForeignKey("subjects.id", ondelete="CASCADE"), primary_key=True)
    encrypted_token = Column(Text, nullable=False)
    is_valid = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(50), nullable=False)
    last_verified_at = Column(String(50), nullable=True)


class LabelModel(Base):
    """Human-readable name for a group id (e.g. course id -> course name)."""

    __tablename__ = "labels"

    subject_id = Column(String(64), ForeignKey("subjects.id", ondelete="CASCADE"), primary_key=True)
    group_id = Column(String(64), primary_key=True)
    display_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    synced_at = Column(String(50), nullable=False)


class OccurrenceModel(Base):
    """ORM model for occurrences table.

    One row per (firing, recipient). The unique constraint is what keeps a
    re-delivered firing from producing a second record.
    """

    __tablename__ = "occurrences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    firing_id = Column(String(64), nullable=False)
    owner_id = Column(String(64), nullable=False)
    subject_id = Column(String(64), nullable=False)
    recipient_address = Column(String(20), nullable=False)
    recipient_role = Column(String(16), nullable=False)
    message_body = Column(Text, nullable=False, default="")
    item_count = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default=DeliveryStatus.PENDING.value)
    provider_id = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    error = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=True)

    __table_args__ = (
        UniqueConstraint("firing_id", "recipient_address", name="uq_occurrence_firing_recipient"),
        Index("idx_occurrences_pair_created", "owner_id", "subject_id", "created_at"),
        Index("idx_occurrences_provider_id", "provider_id"),
        Index("idx_occurrences_status_created", "status", "created_at"),
    )

    def to_domain(self) -> OccurrenceRecord:
        return OccurrenceRecord(
            id=self.id,
            firing_id=self.firing_id,
            owner_id=self.owner_id,
            subject_id=self.subject_id,
            recipient_address=self.recipient_address,
            recipient_role=RecipientRole(self.recipient_role),
            message_body=self.message_body or "",
            item_count=self.item_count or 0,
            status=DeliveryStatus(self.status),
            provider_id=self.provider_id,
            attempts=self.attempts,
            error=self.error,
            created_at=parse_db_timestamp(self.created_at),
            updated_at=parse_db_timestamp(self.updated_at),
        )

    @classmethod
    def from_domain(cls, record: OccurrenceRecord) -> "OccurrenceModel":
        return cls(
            id=record.id,
            firing_id=record.firing_id,
            owner_id=record.owner_id,
            subject_id=record.subject_id,
            recipient_address=record.recipient_address,
            recipient_role=RecipientRole(record.recipient_role).value,
            message_body=record.message_body,
            item_count=record.item_count,
            status=DeliveryStatus(record.status).value,
            provider_id=record.provider_id,
            attempts=record.attempts,
            error=record.error,
            created_at=format_db_timestamp(record.created_at),
            updated_at=format_db_timestamp(record.updated_at),
        )


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent)."""
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)

        from sqlalchemy import inspect

        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")

    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
