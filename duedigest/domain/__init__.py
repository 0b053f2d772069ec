"""Domain models for owners, subjects, schedules and delivery history."""

from .models import (
    DeliveryStatus,
    DueItem,
    OccurrenceRecord,
    Owner,
    Recipient,
    RecipientRole,
    Recurrence,
    Subject,
)

__all__ = [
    "DeliveryStatus",
    "DueItem",
    "OccurrenceRecord",
    "Owner",
    "Recipient",
    "RecipientRole",
    "Recurrence",
    "Subject",
]
