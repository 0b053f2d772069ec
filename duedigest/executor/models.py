"""Firing state and result models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from duedigest.domain.models import DeliveryStatus, RecipientRole


class FiringState(str, Enum):
    """Lifecycle of one firing.

    triggered -> fetching -> formatting -> dispatching -> completed, with
    failed_retryable and failed_terminal as the two exits on error.
    """

    TRIGGERED = "triggered"
    FETCHING = "fetching"
    FORMATTING = "formatting"
    DISPATCHING = "dispatching"
    COMPLETED = "completed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


class RecipientOutcome(BaseModel):
    """What happened to one recipient during one attempt."""

    address: str
    role: RecipientRole
    status: DeliveryStatus
    provider_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False


class FiringResult(BaseModel):
    """Outcome of one attempt of one firing."""

    firing_id: str
    owner_id: str
    subject_id: str
    attempt: int = 1
    state: FiringState = FiringState.TRIGGERED
    item_count: int = 0
    segments: int = 0
    outcomes: list[RecipientOutcome] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    rate_limited: bool = False
    retry_after: Optional[float] = None

    @property
    def sent_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.skipped and o.status.is_success)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.skipped and o.status is DeliveryStatus.FAILED)
