"""Delivery client exceptions."""

from typing import Optional


class DeliveryError(Exception):
    """Base exception for delivery failures."""

    pass


class InvalidAddressError(DeliveryError):
    """Destination is not a valid E.164 number. Never retried."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Invalid phone number format (must be E.164, e.g. +15551234567): {address!r}")
        self.address = address


class ProviderError(DeliveryError):
    """The SMS provider refused or failed the send.

    Attributes:
        permanent: True when retrying cannot succeed (unsubscribed or
            unreachable number, rejected request)
        code: Provider error code, when given
        status: HTTP status from the provider, when given
    """

    def __init__(
        self,
        message: str,
        permanent: bool = False,
        code: Optional[int] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.permanent = permanent
        self.code = code
        self.status = status
