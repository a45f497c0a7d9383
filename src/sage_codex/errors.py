"""
Error taxonomy and result types.

Session operations never raise across their boundary; they return a
ServiceResult carrying either data or a ServiceError. Row stores raise
StoreError, which the callers convert to UPSTREAM_FAILURE.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import anthropic
import openai


class ErrorKind(str, Enum):
    """Kinds of failure reported to callers."""
    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN_TOOL = "unknown_tool"
    HANDLER_ERROR = "handler_error"
    UPSTREAM_FAILURE = "upstream_failure"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.UNKNOWN_TOOL: 400,
    ErrorKind.HANDLER_ERROR: 400,
    ErrorKind.UPSTREAM_FAILURE: 502,
}


@dataclass
class ServiceError:
    """A classified failure with a short, client-safe message."""

    kind: ErrorKind
    message: str
    retryable: bool = False

    def to_frame(self) -> dict[str, Any]:
        """Render as a transport error frame."""
        return {"type": "error", "code": self.kind.value, "message": self.message}


@dataclass
class ServiceResult:
    """Result/error pair returned by session operations."""

    data: Any = None
    error: ServiceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Any) -> "ServiceResult":
        return cls(data=data)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "ServiceResult":
        return cls(error=ServiceError(kind=kind, message=message))


class StoreError(Exception):
    """Raised by row-store implementations when the backend fails."""


class ActiveSessionExists(StoreError):
    """Raised when creating a second active session for a user."""


class TurnInProgressError(Exception):
    """Raised when a turn is requested while another is streaming."""

    def __init__(self, session_id: str):
        super().__init__(f"Turn in progress for session {session_id}")
        self.session_id = session_id


_STATUS_ERRORS = (anthropic.APIStatusError, openai.APIStatusError)
_TIMEOUT_ERRORS = (anthropic.APITimeoutError, openai.APITimeoutError, TimeoutError)
_CONNECTION_ERRORS = (anthropic.APIConnectionError, openai.APIConnectionError, ConnectionError)


def classify_upstream_error(error: BaseException) -> ServiceError:
    """Classify an upstream model SDK error into a client-safe ServiceError.

    HTTP errors from the anthropic and openai SDKs are classified by status
    code; their timeout and connection errors by type.
    """
    status = error.status_code if isinstance(error, _STATUS_ERRORS) else None

    if status == 429:
        return ServiceError(
            ErrorKind.UPSTREAM_FAILURE,
            "The AI service is currently busy. Please wait a moment before trying again.",
            retryable=True,
        )
    if status in (401, 403):
        return ServiceError(
            ErrorKind.UPSTREAM_FAILURE,
            "AI service authentication failed. Please contact the administrator.",
        )
    if status == 400:
        return ServiceError(
            ErrorKind.UPSTREAM_FAILURE,
            "The request to the AI service was malformed. Please try again with different input.",
        )
    if isinstance(status, int) and status >= 500:
        return ServiceError(
            ErrorKind.UPSTREAM_FAILURE,
            "The AI service is experiencing issues. Please try again shortly.",
            retryable=True,
        )
    # APITimeoutError subclasses APIConnectionError
    if isinstance(error, _TIMEOUT_ERRORS):
        return ServiceError(
            ErrorKind.UPSTREAM_FAILURE,
            "The generation request timed out. Try again shortly.",
            retryable=True,
        )
    if isinstance(error, _CONNECTION_ERRORS):
        return ServiceError(
            ErrorKind.UPSTREAM_FAILURE,
            "Could not reach the AI service. Please check your connection and try again.",
            retryable=True,
        )
    return ServiceError(
        ErrorKind.UPSTREAM_FAILURE,
        "An unexpected error occurred while generating a response.",
        retryable=True,
    )
