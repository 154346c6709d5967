"""
User-facing error messages.

Flows raise precise exceptions; the UI shows one short sentence. This
module is the single mapping between the two.
"""

from typing import Optional

from finledger.engine.installments import InstallmentError
from finledger.engine.month_close import MonthAlreadyClosedError
from finledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    NotFoundError,
    PartialWriteError,
)
from finledger.validation.validator import LedgerValidationError


CONTEXT_MESSAGES = {
    "expense": "Could not save the expense. Please try again",
    "installment": "Could not save the installment purchase. Please try again",
    "income": "Could not save the income. Please try again",
    "service": "Could not save the service. Please try again",
    "payment": "Could not update the payment. Please try again",
    "month_close": "Could not close the month. Please try again",
    "load": "Could not load your data. Please try again",
    "delete": "Could not delete. Please try again",
    "update": "Could not update. Please try again",
}

GENERIC_MESSAGE = "Something went wrong. Please try again"


def get_user_friendly_message(error: BaseException, context: Optional[str] = None) -> str:
    """
    Map any error raised by a flow to a message fit for the UI.

    Args:
        error: The exception raised by the flow
        context: What the user was doing (a CONTEXT_MESSAGES key)
    """
    if isinstance(error, LedgerValidationError):
        return "Please complete all required fields correctly"
    if isinstance(error, InstallmentError):
        return "The purchase cannot be split that way. Check the amount and installments"
    if isinstance(error, MonthAlreadyClosedError):
        return "This month has already been closed"
    if isinstance(error, ConnectionError):
        return "Connection error. Check your internet connection and try again"
    if isinstance(error, DuplicateError):
        return "This item already exists"
    if isinstance(error, NotFoundError):
        if context == "delete":
            return "This item no longer exists"
        return "This item could not be found. Please reload and try again"
    if isinstance(error, PartialWriteError):
        return "The change was only partly saved. Please reload and check your data"

    if context in CONTEXT_MESSAGES:
        return CONTEXT_MESSAGES[context]

    message = str(error)
    if message and len(message) < 100:
        return message
    return GENERIC_MESSAGE
