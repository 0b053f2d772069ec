"""Core domain models: owners, subjects, schedules, due items, occurrences.

- Owner: the party receiving digests (phone, timezone, recurrence preference)
- Subject: the monitored account whose due items are fetched
- Recurrence: time-of-day + weekday set + timezone for one schedule
- DueItem: one fetched, dated item (never persisted)
- OccurrenceRecord: one delivery attempt to one recipient for one firing
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
DEFAULT_WEEKDAYS = frozenset(WEEKDAYS[:5])


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DeliveryStatus(str, Enum):
    """Delivery status of one occurrence record.

    Transitions only move forward: pending -> sent -> delivered, or
    pending -> failed. Re-applying the current status is a no-op.
    """

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"

    @classmethod
    def can_transition(cls, current: "DeliveryStatus", new: "DeliveryStatus") -> bool:
        return DeliveryStatus(new) in _ALLOWED_TRANSITIONS[DeliveryStatus(current)]

    @property
    def is_success(self) -> bool:
        return self in (DeliveryStatus.SENT, DeliveryStatus.DELIVERED)

    @property
    def is_final(self) -> bool:
        return self is not DeliveryStatus.PENDING


_ALLOWED_TRANSITIONS = {
    DeliveryStatus.PENDING: {DeliveryStatus.SENT, DeliveryStatus.FAILED},
    DeliveryStatus.SENT: {DeliveryStatus.DELIVERED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.FAILED: set(),
}


class RecipientRole(str, Enum):
    """Who a message went to, relative to the schedule."""

    OWNER = "owner"
    SUBJECT = "subject"


class Recurrence(BaseModel):
    """Wall-clock delivery time, interpreted in ``timezone`` on each weekday."""

    hour: int = Field(15, ge=0, le=23)
    minute: int = Field(0, ge=0, le=59)
    weekdays: FrozenSet[str] = Field(default=DEFAULT_WEEKDAYS, min_length=1)
    timezone: str = Field("America/Los_Angeles")

    @field_validator("weekdays", mode="before")
    @classmethod
    def normalize_weekdays(cls, v):
        if isinstance(v, str):
            v = v.split(",")
        normalized = set()
        for day in v:
            key = str(day).strip().lower()[:3]
            if key not in WEEKDAYS:
                raise ValueError(f"Unknown weekday: {day!r}")
            normalized.add(key)
        return frozenset(normalized)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @classmethod
    def from_preferences(cls, send_time: str, send_days: str, tz: str) -> "Recurrence":
        """Build from stored preference strings, e.g. ``"15:00:00"``, ``"Mon,Wed"``."""
        parts = send_time.strip().split(":")
        if len(parts) < 2:
            raise ValueError(f"Invalid send time: {send_time!r} (expected HH:MM or HH:MM:SS)")
        return cls(hour=int(parts[0]), minute=int(parts[1]), weekdays=send_days, timezone=tz)

    @property
    def ordered_weekdays(self) -> list[str]:
        return [day for day in WEEKDAYS if day in self.weekdays]

    @property
    def send_time(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    @property
    def send_days(self) -> str:
        return ",".join(day.capitalize() for day in self.ordered_weekdays)

    def cron_fields(self) -> dict:
        """Keyword arguments for a cron trigger (``day_of_week``, ``hour``, ``minute``)."""
        return {
            "day_of_week": ",".join(self.ordered_weekdays),
            "hour": self.hour,
            "minute": self.minute,
        }

    model_config = {"frozen": True}


class Owner(BaseModel):
    """Party configuring and receiving notifications."""

    id: str
    name: str = ""
    phone: Optional[str] = None
    timezone: str = "America/Los_Angeles"
    send_time: str = "15:00"
    send_days: str = "Mon,Tue,Wed,Thu,Fri"
    include_subject_in_sms: bool = False

    @property
    def recurrence(self) -> Recurrence:
        return Recurrence.from_preferences(self.send_time, self.send_days, self.timezone)


class Subject(BaseModel):
    """Monitored account whose due items are tracked."""

    id: str
    name: str
    source_domain: str
    source_user_id: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True


class Recipient(BaseModel):
    """One resolved destination for a firing."""

    address: str
    role: RecipientRole

    model_config = {"frozen": True, "use_enum_values": False}


class DueItem(BaseModel):
    """One dated item fetched from the source; ephemeral."""

    item_type: str
    title: str
    due_at: datetime
    group_id: str

    @field_validator("due_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _to_utc(v)

    @field_validator("group_id", mode="before")
    @classmethod
    def coerce_group_id(cls, v) -> str:
        return str(v)

    @property
    def due_date(self) -> date:
        """Calendar date of the UTC due instant."""
        return self.due_at.date()

    model_config = {"frozen": True}


class OccurrenceRecord(BaseModel):
    """One logged delivery attempt to one recipient."""

    id: Optional[int] = None
    firing_id: str
    owner_id: str
    subject_id: str
    recipient_address: str
    recipient_role: RecipientRole
    message_body: str = ""
    item_count: int = 0
    status: DeliveryStatus = DeliveryStatus.PENDING
    provider_id: Optional[str] = None
    attempts: int = 1
    error: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(v)
