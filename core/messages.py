"""
core/messages.py -- Closed set of response message codes and their canonical text.

Clients branch on messageCode, never on the human-readable message, so the
text can be reworded without breaking anyone.
"""

from enum import Enum
from typing import Optional, Union


class MessageCode(str, Enum):
    # Success
    SUCCESS = "SUCCESS"
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    ACCEPTED = "ACCEPTED"

    # Client errors
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    UNPROCESSABLE_ENTITY = "UNPROCESSABLE_ENTITY"

    # Server errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


MESSAGES: dict[MessageCode, str] = {
    MessageCode.SUCCESS: "Success",
    MessageCode.CREATED: "Created successfully",
    MessageCode.UPDATED: "Updated successfully",
    MessageCode.DELETED: "Deleted successfully",
    MessageCode.ACCEPTED: "Request accepted",
    MessageCode.BAD_REQUEST: "Bad request",
    MessageCode.UNAUTHORIZED: "Unauthorized",
    MessageCode.FORBIDDEN: "Forbidden",
    MessageCode.NOT_FOUND: "Not found",
    MessageCode.CONFLICT: "Conflict occurred",
    MessageCode.VALIDATION_FAILED: "Validation failed",
    MessageCode.INVALID_CREDENTIALS: "Email or password is incorrect",
    MessageCode.TOO_MANY_REQUESTS: "Too many requests",
    MessageCode.UNPROCESSABLE_ENTITY: "Unprocessable entity",
    MessageCode.INTERNAL_ERROR: "Internal server error",
    MessageCode.SERVICE_UNAVAILABLE: "Service unavailable",
}

_CODE_VALUES = {code.value: code for code in MessageCode}


def message_for(code: MessageCode) -> str:
    """Return the canonical text for code (INTERNAL_ERROR text for unmapped codes)."""
    return MESSAGES.get(code, MESSAGES[MessageCode.INTERNAL_ERROR])


def code_for_message(message: str) -> Optional[MessageCode]:
    """Reverse lookup: the code whose canonical text is exactly message, else None."""
    for code, text in MESSAGES.items():
        if text == message:
            return code
    return None


def as_code(value: Union[MessageCode, str, None]) -> Optional[MessageCode]:
    """Return value as a MessageCode if it names one, else None.

    A plain string equal to a code value ("NOT_FOUND") counts as that code;
    any other string is free text.
    """
    if isinstance(value, MessageCode):
        return value
    if isinstance(value, str):
        return _CODE_VALUES.get(value)
    return None
