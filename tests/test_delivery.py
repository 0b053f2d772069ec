"""Tests for the Twilio delivery client."""

from unittest.mock import Mock

import pytest
import requests
from twilio.base.exceptions import TwilioRestException

from duedigest.delivery import (
    InvalidAddressError,
    ProviderError,
    TwilioDeliveryClient,
    is_valid_e164,
    mask_address,
)


def rest_error(status, code):
    return TwilioRestException(status, "https://api.twilio.com/Messages.json", msg="rejected", code=code)


@pytest.fixture
def twilio():
    client = Mock()
    client.messages.create.return_value = Mock(sid="SM123")
    return client


@pytest.fixture
def delivery(twilio):
    return TwilioDeliveryClient("AC123", "token", "+15550000000", client=twilio)


class TestAddressValidation:
    """E.164 checks."""

    @pytest.mark.parametrize("address", ["+15551230001", "+447911123456", "+12"])
    def test_valid(self, address):
        assert is_valid_e164(address)

    @pytest.mark.parametrize("address", ["", None, "5551230001", "+05551230001", "+1 555 123", "+1234567890123456"])
    def test_invalid(self, address):
        assert not is_valid_e164(address)

    def test_mask_address(self):
        assert mask_address("+15551234567") == "+1******4567"
        assert mask_address("+123") == "***"

    def test_invalid_from_number_rejected(self, twilio):
        with pytest.raises(InvalidAddressError):
            TwilioDeliveryClient("AC123", "token", "555", client=twilio)


class TestSend:
    """Sending and error classification."""

    def test_send_returns_sid(self, delivery, twilio):
        body = "Assignments for 2026-02-18:\n\nNo assignments due.\n"

        assert delivery.send("+15551230001", body) == "SM123"

        twilio.messages.create.assert_called_once_with(body=body, from_="+15550000000", to="+15551230001")

    def test_status_callback_passed(self, twilio):
        delivery = TwilioDeliveryClient(
            "AC123", "token", "+15550000000", status_callback_url="https://example.com/cb", client=twilio
        )
        delivery.send("+15551230001", "hi")
        assert twilio.messages.create.call_args.kwargs["status_callback"] == "https://example.com/cb"

    def test_long_body_not_truncated(self, delivery, twilio):
        body = "x" * 2000
        delivery.send("+15551230001", body)
        assert twilio.messages.create.call_args.kwargs["body"] == body

    def test_invalid_address_never_calls_provider(self, delivery, twilio):
        with pytest.raises(InvalidAddressError):
            delivery.send("555-1234", "hi")
        twilio.messages.create.assert_not_called()

    @pytest.mark.parametrize("code", [21211, 21408, 21610, 21612, 21614])
    def test_permanent_codes(self, delivery, twilio, code):
        twilio.messages.create.side_effect = rest_error(400, code)
        with pytest.raises(ProviderError) as exc_info:
            delivery.send("+15551230001", "hi")
        assert exc_info.value.permanent
        assert exc_info.value.code == code

    def test_client_error_status_is_permanent(self, delivery, twilio):
        twilio.messages.create.side_effect = rest_error(403, 20003)
        with pytest.raises(ProviderError) as exc_info:
            delivery.send("+15551230001", "hi")
        assert exc_info.value.permanent

    @pytest.mark.parametrize("status,code", [(429, 20429), (500, 20500), (503, None)])
    def test_retryable_statuses(self, delivery, twilio, status, code):
        twilio.messages.create.side_effect = rest_error(status, code)
        with pytest.raises(ProviderError) as exc_info:
            delivery.send("+15551230001", "hi")
        assert not exc_info.value.permanent
        assert exc_info.value.status == status

    def test_transport_failure_is_retryable(self, delivery, twilio):
        twilio.messages.create.side_effect = requests.exceptions.ConnectionError("reset")
        with pytest.raises(ProviderError) as exc_info:
            delivery.send("+15551230001", "hi")
        assert not exc_info.value.permanent

    def test_missing_sid_is_retryable(self, delivery, twilio):
        twilio.messages.create.return_value = Mock(sid=None)
        with pytest.raises(ProviderError) as exc_info:
            delivery.send("+15551230001", "hi")
        assert not exc_info.value.permanent
