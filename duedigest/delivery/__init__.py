"""SMS delivery client."""

from .exceptions import DeliveryError, InvalidAddressError, ProviderError
from .twilio_client import (
    PERMANENT_ERROR_CODES,
    TwilioDeliveryClient,
    is_permanent_rest_error,
    is_valid_e164,
    mask_address,
)

__all__ = [
    "DeliveryError",
    "InvalidAddressError",
    "ProviderError",
    "PERMANENT_ERROR_CODES",
    "TwilioDeliveryClient",
    "is_permanent_rest_error",
    "is_valid_e164",
    "mask_address",
]
