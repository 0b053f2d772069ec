"""Control surface for owner/subject management and manual firings."""

from .service import ControlError, ControlService, MessagePreview

__all__ = ["ControlError", "ControlService", "MessagePreview"]
