"""Input validation and user-facing error messages."""

from finledger.validation.messages import get_user_friendly_message
from finledger.validation.validator import LedgerValidationError, LedgerValidator

__all__ = [
    "LedgerValidationError",
    "LedgerValidator",
    "get_user_friendly_message",
]
