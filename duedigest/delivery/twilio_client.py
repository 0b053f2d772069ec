"""SMS delivery through Twilio."""

import re
from typing import Optional

import requests
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from duedigest.logging import get_logger

from .exceptions import InvalidAddressError, ProviderError

logger = get_logger(__name__, component="delivery")

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")

# Invalid "To" number, unsubscribed recipient, landline/unreachable,
# "To" not SMS capable, region not permitted.
PERMANENT_ERROR_CODES = frozenset({21211, 21408, 21610, 21612, 21614})


def is_valid_e164(address: Optional[str]) -> bool:
    return bool(address) and bool(E164_PATTERN.match(address))


def mask_address(address: str) -> str:
    """``+15551234567`` -> ``+1******4567`` for logs."""
    if len(address) <= 6:
        return "***"
    return address[:2] + "*" * (len(address) - 6) + address[-4:]


class TwilioDeliveryClient:
    """Send one SMS per call and return the provider message sid.

    The body is passed through untouched; long bodies are split into
    segments by the provider, never truncated here.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        status_callback_url: Optional[str] = None,
        client: Optional[Client] = None,
    ):
        if not is_valid_e164(from_number):
            raise InvalidAddressError(from_number)
        self.from_number = from_number
        self.status_callback_url = status_callback_url
        self._client = client or Client(account_sid, auth_token)

    def send(self, address: str, body: str) -> str:
        """Send ``body`` to ``address``.

        Raises:
            InvalidAddressError: Address is not E.164; the provider is not called
            ProviderError: Provider failure, with ``permanent`` set accordingly
        """
        if not is_valid_e164(address):
            logger.warning(
                "Refusing to send to invalid address",
                extra={"event": "delivery.send.invalid_address", "to": mask_address(address or "")},
            )
            raise InvalidAddressError(address)

        params = {"body": body, "from_": self.from_number, "to": address}
        if self.status_callback_url:
            params["status_callback"] = self.status_callback_url

        try:
            message = self._client.messages.create(**params)
        except TwilioRestException as e:
            permanent = is_permanent_rest_error(e)
            logger.error(
                f"Twilio rejected message: {e.msg}",
                extra={
                    "event": "delivery.send.failed",
                    "to": mask_address(address),
                    "provider_code": e.code,
                    "provider_status": e.status,
                    "permanent": permanent,
                },
            )
            raise ProviderError(
                f"Twilio error {e.code} (HTTP {e.status}): {e.msg}",
                permanent=permanent,
                code=e.code,
                status=e.status,
            ) from e
        except (TwilioException, requests.exceptions.RequestException) as e:
            logger.warning(
                f"Twilio request failed: {e}",
                extra={"event": "delivery.send.failed", "to": mask_address(address), "permanent": False},
            )
            raise ProviderError(f"Twilio request failed: {e}", permanent=False) from e

        sid = getattr(message, "sid", None)
        if not sid:
            logger.error(
                "Twilio returned no message sid",
                extra={"event": "delivery.send.failed", "to": mask_address(address), "permanent": False},
            )
            raise ProviderError("Failed to send SMS: no message sid returned", permanent=False)

        logger.info(
            "SMS sent",
            extra={
                "event": "delivery.send.succeeded",
                "to": mask_address(address),
                "provider_id": sid,
                "length": len(body),
            },
        )
        return sid


def is_permanent_rest_error(error: TwilioRestException) -> bool:
    if error.code in PERMANENT_ERROR_CODES:
        return True
    status = error.status or 0
    return 400 <= status < 500 and status != 429
