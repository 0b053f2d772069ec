"""Tests for the control surface."""

from unittest.mock import Mock

import pytest
from apscheduler.jobstores.memory import MemoryJobStore
from cryptography.fernet import Fernet

from duedigest.config.models import SchedulerConfig
from duedigest.control import ControlError, ControlService
from duedigest.credentials import CredentialVault, DatabaseCredentialProvider
from duedigest.domain.models import DeliveryStatus, Recurrence
from duedigest.executor import FiringExecutor, FiringState
from duedigest.persistence import CredentialRepository, LabelRepository, SubjectRepository, get_session
from duedigest.scheduler import FiringRunner, SchedulerService
from duedigest.source import AuthError
from tests.helpers.fakes import FakeDeliveryClient, FakeSourceClient, make_item

OWNER_PHONE = "+15551230001"


@pytest.fixture
def source():
    return FakeSourceClient(labels={"101": "Algebra I"})


@pytest.fixture
def delivery():
    return FakeDeliveryClient()


@pytest.fixture
def scheduler(database, source, delivery):
    svc = SchedulerService(jobstore=MemoryJobStore())
    svc.start(FiringRunner(FiringExecutor(source, delivery)), paused=True)
    yield svc
    svc.shutdown(wait=False)


@pytest.fixture
def control(source, scheduler):
    credentials = DatabaseCredentialProvider(CredentialVault(Fernet.generate_key()))
    return ControlService(
        source, credentials, scheduler, defaults=SchedulerConfig(default_timezone="America/Chicago")
    )


@pytest.fixture
def registered(control):
    owner = control.register_owner(OWNER_PHONE, name="Parent", owner_id="o1")
    subject = control.add_subject("o1", "Student", "school.instructure.com", "canvas-token", subject_id="s1")
    return owner, subject


class TestRegistration:
    """Owners and subjects."""

    def test_register_owner_uses_configured_defaults(self, control):
        owner = control.register_owner(OWNER_PHONE)

        assert owner.timezone == "America/Chicago"
        assert owner.send_time == "15:00"
        assert owner.send_days == "Mon,Tue,Wed,Thu,Fri"

    def test_register_owner_normalizes_schedule(self, control):
        owner = control.register_owner(OWNER_PHONE, send_time="07:05:00", send_days="wed,Monday")
        assert owner.send_time == "07:05"
        assert owner.send_days == "Mon,Wed"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"phone": "555-1234"},
            {"phone": OWNER_PHONE, "timezone": "Nowhere/Special"},
            {"phone": OWNER_PHONE, "send_days": "Someday"},
            {"phone": OWNER_PHONE, "send_time": "25:00"},
        ],
    )
    def test_register_owner_rejects_bad_input(self, control, kwargs):
        with pytest.raises(ControlError):
            control.register_owner(**kwargs)

    def test_add_subject(self, control, scheduler, registered):
        _, subject = registered

        assert subject.source_user_id == "4242"
        assert scheduler.registry.installed_keys() == ["digest-2-o1-s1"]
        with get_session() as session:
            assert SubjectRepository(session).is_linked("o1", "s1")
            assert LabelRepository(session).get_map("s1") == {"101": "Algebra I"}
            stored = CredentialRepository(session).get_encrypted_token("s1")
        assert stored and "canvas-token" not in stored
        assert control.credentials.get_token("s1") == "canvas-token"

    def test_add_subject_unknown_owner(self, control):
        with pytest.raises(ControlError):
            control.add_subject("ghost", "Student", "school.instructure.com", "token")

    def test_add_subject_rejected_token(self, control, source):
        control.register_owner(OWNER_PHONE, owner_id="o1")
        source.validate_token = Mock(side_effect=AuthError("HTTP 401"))

        with pytest.raises(ControlError):
            control.add_subject("o1", "Student", "school.instructure.com", "bad-token")

        with get_session() as session:
            assert SubjectRepository(session).list_for_owner("o1") == []

    def test_remove_subject(self, control, scheduler, registered):
        assert control.remove_subject("o1", "s1") is True
        assert scheduler.registry.installed_keys() == []
        assert control.remove_subject("o1", "s1") is False


class TestPreferences:
    """Preference changes re-install triggers."""

    def test_update_preferences_reschedules(self, control, scheduler, registered):
        owner = control.update_preferences("o1", send_time="06:30", send_days="Sat,Sun")

        assert owner.send_time == "06:30"
        assert owner.timezone == "America/Chicago"
        expected = Recurrence(hour=6, minute=30, weekdays="sat,sun", timezone="America/Chicago")
        assert scheduler.registry.is_current("o1", "s1", expected)

    def test_update_preferences_unknown_owner(self, control):
        with pytest.raises(ControlError):
            control.update_preferences("ghost", send_time="06:30")


class TestFiringAndHistory:
    """Manual firing, preview, history and callbacks."""

    def test_fire_now_wait(self, control, registered, source, delivery):
        source.default = [make_item("Essay", "2026-02-19T06:59:00")]

        result = control.fire_now("o1", "s1", wait=True)

        assert result.state is FiringState.COMPLETED
        assert result.firing_id.startswith("manual-")
        assert delivery.sent[0][0] == OWNER_PHONE
        assert "Course: Algebra I" in delivery.sent[0][1]

    def test_fire_now_queued(self, control, scheduler, registered):
        firing_id = control.fire_now("o1", "s1")
        assert scheduler.scheduler.get_job(firing_id) is not None

    def test_fire_now_unknown_subject(self, control, registered):
        with pytest.raises(ControlError):
            control.fire_now("o1", "ghost")

    def test_preview_does_not_send(self, control, registered, source, delivery):
        source.default = [make_item("Essay", "2026-02-19T06:59:00")]

        preview = control.preview("o1", "s1", max_length=40)

        assert preview.item_count == 1
        assert "Assignment: Essay" in preview.body
        assert len(preview.preview) == 40
        assert preview.segments == 1
        assert delivery.sent == []

    def test_history_and_last_occurrence(self, control, registered):
        first = control.fire_now("o1", "s1", wait=True)
        second = control.fire_now("o1", "s1", wait=True)

        history = control.history("o1")

        assert [r.firing_id for r in history] == [second.firing_id, first.firing_id]
        assert control.last_occurrence("o1", "s1").firing_id == second.firing_id
        assert control.last_occurrence("o1", "other") is None

    def test_subject_history_and_delivery_counts(self, control, registered):
        fired = control.fire_now("o1", "s1", wait=True)

        assert [r.firing_id for r in control.subject_history("s1")] == [fired.firing_id]
        assert control.subject_history("other") == []
        assert control.delivery_counts() == {"pending": 0, "sent": 1, "delivered": 0, "failed": 0}

    def test_record_delivery_status(self, control, registered):
        control.fire_now("o1", "s1", wait=True)
        provider_id = control.history("o1")[0].provider_id

        assert control.record_delivery_status(provider_id, "queued") is False
        assert control.record_delivery_status(provider_id, "delivered") is True
        assert control.history("o1")[0].status is DeliveryStatus.DELIVERED
        assert control.record_delivery_status(provider_id, "undelivered", "carrier") is False

    def test_queue_stats(self, control, registered):
        assert control.queue_stats().scheduled == 1
