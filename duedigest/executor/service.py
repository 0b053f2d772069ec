"""Firing executor: one attempt of one (owner, subject) digest.

The executor is the only place that turns errors into retry decisions.
Each attempt walks triggered -> fetching -> formatting -> dispatching and
ends in completed, failed_retryable or failed_terminal. Every recipient is
dispatched and recorded independently; one recipient's failure never blocks
another's send.
"""

from datetime import datetime
from typing import Callable, ContextManager, Optional

from sqlalchemy.orm import Session

from duedigest.delivery import InvalidAddressError, ProviderError
from duedigest.domain.models import (
    DeliveryStatus,
    DueItem,
    Owner,
    Recipient,
    RecipientRole,
    Subject,
)
from duedigest.formatting import format_message, validate_message
from duedigest.logging import get_logger, log_context
from duedigest.persistence import (
    LabelRepository,
    OccurrenceRepository,
    OwnerRepository,
    PersistenceError,
    SubjectRepository,
    get_session,
)
from duedigest.source import (
    AuthError,
    NetworkError,
    RateLimitError,
    SourceError,
)
from duedigest.utils.timestamps import local_date, utc_now

from .models import FiringResult, FiringState, RecipientOutcome
from .retry import RetryPolicy

logger = get_logger(__name__, component="executor")


def resolve_recipients(owner: Owner, subject: Subject) -> list[Recipient]:
    """Owner's phone first, then the subject's when the owner opted in.

    The first entry is the primary recipient.
    """
    recipients = []
    if owner.phone:
        recipients.append(Recipient(address=owner.phone, role=RecipientRole.OWNER))
    if owner.include_subject_in_sms and subject.phone and subject.phone != owner.phone:
        recipients.append(Recipient(address=subject.phone, role=RecipientRole.SUBJECT))
    return recipients


class FiringExecutor:
    """Run firings against a source client and a delivery client."""

    def __init__(
        self,
        source_client,
        delivery_client,
        retry_policy: Optional[RetryPolicy] = None,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        max_segments: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.source_client = source_client
        self.delivery_client = delivery_client
        self.retry_policy = retry_policy or RetryPolicy()
        self._session_factory = session_factory
        self.max_segments = max_segments
        self._clock = clock

    def execute(self, owner_id: str, subject_id: str, firing_id: str, attempt: int = 1) -> FiringResult:
        """Run one attempt of ``firing_id``.

        Returns:
            FiringResult whose ``state`` is completed, failed_retryable or
            failed_terminal
        """
        result = FiringResult(firing_id=firing_id, owner_id=owner_id, subject_id=subject_id, attempt=attempt)

        with log_context(firing_id=firing_id, owner_id=owner_id, subject_id=subject_id, attempt=attempt):
            logger.info("Firing started", extra={"event": "firing.started"})
            result = self._run(result)
            logger.info(
                f"Firing finished: {result.state.value}",
                extra={
                    "event": f"firing.{result.state.value}",
                    "state": result.state.value,
                    "item_count": result.item_count,
                    "sent": result.sent_count,
                    "failed": result.failed_count,
                    "error": result.error,
                },
            )
        return result

    def _run(self, result: FiringResult) -> FiringResult:
        result.state = FiringState.TRIGGERED
        with self._session_factory() as session:
            owner = OwnerRepository(session).get(result.owner_id)
            subjects = SubjectRepository(session)
            subject = subjects.get(result.subject_id)
            linked = subjects.is_linked(result.owner_id, result.subject_id)

        if owner is None or subject is None or not linked or not subject.is_active:
            logger.info(
                "Owner/subject pair is no longer active; nothing to send",
                extra={"event": "firing.inactive_pair"},
            )
            result.state = FiringState.COMPLETED
            return result

        recipients = resolve_recipients(owner, subject)
        if not recipients:
            logger.info("No recipients resolved", extra={"event": "firing.no_recipients"})
            result.state = FiringState.COMPLETED
            return result

        primary = recipients[0]
        pending = self._pending_recipients(result.firing_id, recipients)
        if not pending:
            logger.info(
                "Every recipient already has a final record for this firing",
                extra={"event": "firing.duplicate"},
            )
            result.state = FiringState.COMPLETED
            return result

        # fetching
        result.state = FiringState.FETCHING
        try:
            items = self.source_client.fetch(subject)
        except AuthError as e:
            return self._fail_terminal(result, primary, e)
        except (NetworkError, RateLimitError) as e:
            if isinstance(e, RateLimitError):
                result.rate_limited = True
                result.retry_after = e.retry_after
            if self.retry_policy.should_retry(result.attempt):
                return self._fail_retryable(result, e)
            return self._fail_terminal(result, primary, e, exhausted=True)
        except SourceError as e:
            return self._fail_terminal(result, primary, e)
        result.item_count = len(items)

        # formatting
        result.state = FiringState.FORMATTING
        try:
            body = self._format(owner, subject, items)
        except Exception as e:
            logger.error(
                "Formatting failed",
                exc_info=True,
                extra={"event": "firing.format_error", "error_type": type(e).__name__},
            )
            return self._fail_terminal(result, primary, e)

        validation = validate_message(body, self.max_segments)
        result.segments = validation.segments
        if not validation.valid:
            logger.warning(
                "Message failed validation; sending untruncated",
                extra={
                    "event": "message.validation_failed",
                    "segments": validation.segments,
                    "errors": validation.errors,
                },
            )

        # dispatching
        result.state = FiringState.DISPATCHING
        needs_retry = False
        for recipient in recipients:
            if recipient not in pending:
                result.outcomes.append(self._skipped_outcome(result.firing_id, recipient))
                continue
            outcome = self._dispatch(result, recipient, body, is_primary=recipient == primary)
            result.outcomes.append(outcome)
            if recipient == primary and outcome.status is DeliveryStatus.PENDING:
                needs_retry = True
                result.error = outcome.error
                result.error_type = "ProviderError"

        result.state = FiringState.FAILED_RETRYABLE if needs_retry else FiringState.COMPLETED
        return result

    def _format(self, owner: Owner, subject: Subject, items: list[DueItem]) -> str:
        with self._session_factory() as session:
            labels = LabelRepository(session).get_map(subject.id)
        reference_date = local_date(owner.timezone, self._clock())
        return format_message(items, reference_date, labels)

    def _pending_recipients(self, firing_id: str, recipients: list[Recipient]) -> list[Recipient]:
        with self._session_factory() as session:
            repo = OccurrenceRepository(session)
            pending = []
            for recipient in recipients:
                record = repo.get_for_recipient(firing_id, recipient.address)
                if record is None or not record.status.is_final:
                    pending.append(recipient)
        return pending

    def _skipped_outcome(self, firing_id: str, recipient: Recipient) -> RecipientOutcome:
        with self._session_factory() as session:
            record = OccurrenceRepository(session).get_for_recipient(firing_id, recipient.address)
        return RecipientOutcome(
            address=recipient.address,
            role=recipient.role,
            status=record.status if record else DeliveryStatus.PENDING,
            provider_id=record.provider_id if record else None,
            error=record.error if record else None,
            skipped=True,
        )

    def _dispatch(
        self, result: FiringResult, recipient: Recipient, body: str, is_primary: bool
    ) -> RecipientOutcome:
        with self._session_factory() as session:
            record = OccurrenceRepository(session).begin_attempt(
                result.firing_id,
                result.owner_id,
                result.subject_id,
                recipient,
                body,
                result.item_count,
            )

        outcome = RecipientOutcome(address=recipient.address, role=recipient.role, status=DeliveryStatus.PENDING)
        try:
            provider_id = self.delivery_client.send(recipient.address, body)
        except InvalidAddressError as e:
            return self._record_failure(record.id, outcome, str(e))
        except ProviderError as e:
            if e.permanent:
                return self._record_failure(record.id, outcome, str(e))
            if is_primary and self.retry_policy.should_retry(result.attempt):
                logger.warning(
                    "Primary send failed; will retry",
                    extra={"event": "delivery.send.retry_scheduled", "role": recipient.role.value},
                )
                outcome.error = str(e)
                return outcome
            return self._record_failure(record.id, outcome, str(e))

        outcome.status = DeliveryStatus.SENT
        outcome.provider_id = provider_id
        try:
            with self._session_factory() as session:
                OccurrenceRepository(session).mark_sent(record.id, provider_id)
        except PersistenceError as e:
            # The message is out; only the record is stale.
            logger.error(
                "Sent message but could not record it",
                extra={"event": "occurrence.write_failed", "provider_id": provider_id, "error": str(e)},
            )
        return outcome

    def _record_failure(self, record_id: int, outcome: RecipientOutcome, error: str) -> RecipientOutcome:
        logger.warning(
            "Recipient delivery failed",
            extra={"event": "delivery.recipient.failed", "role": outcome.role.value, "error": error},
        )
        with self._session_factory() as session:
            OccurrenceRepository(session).mark_failed(record_id, error)
        outcome.status = DeliveryStatus.FAILED
        outcome.error = error
        return outcome

    def _fail_retryable(self, result: FiringResult, error: Exception) -> FiringResult:
        result.state = FiringState.FAILED_RETRYABLE
        result.error = str(error)
        result.error_type = type(error).__name__
        logger.warning(
            "Retryable failure",
            extra={"event": "firing.retryable_error", "error_type": result.error_type, "error": result.error},
        )
        return result

    def _fail_terminal(
        self, result: FiringResult, primary: Recipient, error: Exception, exhausted: bool = False
    ) -> FiringResult:
        result.state = FiringState.FAILED_TERMINAL
        result.error_type = type(error).__name__
        result.error = f"{result.error_type}: {error}"
        if exhausted:
            result.error = f"Retries exhausted after {result.attempt} attempts: {result.error}"

        logger.error(
            "Terminal failure",
            extra={"event": "firing.terminal_error", "error_type": result.error_type, "error": result.error},
        )
        with self._session_factory() as session:
            record = OccurrenceRepository(session).record_terminal_failure(
                result.firing_id,
                result.owner_id,
                result.subject_id,
                primary,
                result.error,
                item_count=result.item_count,
            )
        result.outcomes.append(
            RecipientOutcome(
                address=primary.address,
                role=primary.role,
                status=record.status,
                provider_id=record.provider_id,
                error=record.error,
            )
        )
        return result
