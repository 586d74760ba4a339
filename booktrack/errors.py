"""Error taxonomy and normalization for BookTrack API failures.

Every failure that crosses the client boundary is one of the kinds below.
Raw ``httpx`` exceptions are converted here and never reach callers.
"""
from typing import Any, Dict, Optional
import logging

import httpx

logger = logging.getLogger(__name__)


class BookTrackError(Exception):
    """Base class for normalized client errors."""

    kind = "UnknownError"
    default_message = "Network error"

    def __init__(
        self,
        message: Optional[str] = None,
        fields: Optional[Dict[str, str]] = None,
        status_code: Optional[int] = None
    ):
        self.message = message or self.default_message
        self.fields = dict(fields or {})
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "fields": self.fields}


class NetworkError(BookTrackError):
    kind = "NetworkError"
    default_message = "Network error"


class ValidationError(BookTrackError):
    kind = "ValidationError"
    default_message = "Validation failed"


class ServerMessageError(BookTrackError):
    kind = "ServerMessageError"
    default_message = "Request failed"


class AuthError(BookTrackError):
    kind = "AuthError"
    default_message = "Not authorized"


class NotFoundError(BookTrackError):
    kind = "NotFoundError"
    default_message = "Not found"


class UnknownError(BookTrackError):
    kind = "UnknownError"
    default_message = "Network error"


class StorageError(Exception):
    """Raised when the local persistence medium fails."""


def join_field_messages(fields: Dict[str, Any]) -> str:
    """
    Join field-level messages in mapping order.

    Args:
        fields: Field name to message (or list of messages)

    Returns:
        Messages joined with ", "
    """
    parts = []
    for value in fields.values():
        if isinstance(value, (list, tuple)):
            parts.extend(str(item) for item in value)
        else:
            parts.append(str(value))
    return ", ".join(parts)


def validation_error(fields: Dict[str, str]) -> ValidationError:
    """Build a ValidationError whose message lists every field message."""
    return ValidationError(join_field_messages(fields), fields=fields)


def require_fields(values: Dict[str, Optional[str]]) -> None:
    """
    Reject empty text fields before a request is sent.

    Args:
        values: Field name to submitted value

    Raises:
        ValidationError: If any value is empty or whitespace
    """
    missing = {
        name: f"{name.capitalize()} is required"
        for name, value in values.items()
        if not value or not str(value).strip()
    }
    if missing:
        raise validation_error(missing)


def _safe_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def normalize_response(response: httpx.Response) -> BookTrackError:
    """
    Classify an error response from the service.

    Args:
        response: Response with a 4xx/5xx status

    Returns:
        Exactly one normalized error
    """
    status = response.status_code
    payload = _safe_json(response)

    errors = payload.get("errors")
    if isinstance(errors, dict) and errors:
        fields = {str(name): join_field_messages({name: msg}) for name, msg in errors.items()}
        return ValidationError(join_field_messages(errors), fields=fields, status_code=status)

    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        message = None

    if status in (401, 403):
        return AuthError(message, status_code=status)
    if status == 404:
        return NotFoundError(message, status_code=status)
    if message:
        return ServerMessageError(message, status_code=status)

    return UnknownError(status_code=status)


def normalize_error(error: BaseException) -> BookTrackError:
    """
    Map any failure raised while talking to the service onto the taxonomy.

    Args:
        error: Exception raised by the transport or the pipeline

    Returns:
        A BookTrackError (the input itself if already normalized)
    """
    if isinstance(error, BookTrackError):
        return error

    if isinstance(error, httpx.HTTPStatusError):
        return normalize_response(error.response)

    # Timeouts, DNS failures and refused connections never reached the server
    if isinstance(error, httpx.TransportError):
        logger.warning(f"Transport failure: {error!r}")
        return NetworkError()

    logger.error(f"Unclassified client failure: {error!r}")
    return UnknownError()
