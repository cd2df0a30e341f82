"""
Domain-specific exception hierarchy for Sentra.

All custom exceptions inherit from SentraException for consistent error handling.
Each category carries the callable error `code` and the HTTP status it maps to.
"""

from typing import Any


class SentraException(Exception):
    """
    Base exception for all Sentra errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging
        code: Callable-protocol error category
        status_code: HTTP status used when the error crosses the API boundary
    """

    code = "internal"
    status_code = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# ============================================================================
# Request Categories
# ============================================================================

class AuthenticationError(SentraException):
    """Missing or invalid bearer token, or no session user."""

    code = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class InvalidArgumentError(SentraException):
    """A required request field is missing or malformed."""

    code = "invalid-argument"
    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, context={"field": field} if field else None)
        self.field = field


class NotFoundError(SentraException):
    """Referenced record does not exist."""

    code = "not-found"
    status_code = 404

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class PermissionDeniedError(SentraException):
    """Caller is authenticated but may not touch this record."""

    code = "permission-denied"
    status_code = 403

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message)


class NotFriendError(PermissionDeniedError):
    """Cross-user memory access without an accepted friendship."""

    def __init__(self, friend_id: str):
        super().__init__("Can only access memories from friends")
        self.context = {"friend": friend_id}
        self.friend_id = friend_id


class InternalError(SentraException):
    """Anything not covered by a more specific category."""

    code = "internal"
    status_code = 500


# ============================================================================
# LLM Exceptions
# ============================================================================

class LLMException(SentraException):
    """Base class for LLM provider errors."""
    pass


class LLMConnectionError(LLMException):
    """Cannot reach the LLM provider."""

    def __init__(self, url: str, original_error: Exception):
        super().__init__(
            f"Cannot connect to LLM service at {url}",
            context={"url": url, "original": str(original_error)}
        )
        self.url = url
        self.original_error = original_error


class LLMTimeoutError(LLMException):
    """LLM request exceeded its wall-clock budget."""

    def __init__(self, timeout_seconds: float, url: str):
        super().__init__(
            f"LLM request to {url} exceeded {timeout_seconds}s timeout",
            context={"timeout": timeout_seconds, "url": url}
        )
        self.timeout_seconds = timeout_seconds
        self.url = url


class LLMResponseError(LLMException):
    """Non-success status or unparseable body from the provider."""

    def __init__(self, status_code: int, response_text: str, url: str):
        truncated = response_text[:200] + "..." if len(response_text) > 200 else response_text
        super().__init__(
            f"LLM HTTP {status_code} from {url}: {truncated}",
            context={"status_code": status_code, "url": url}
        )
        self.upstream_status = status_code
        self.response_text = response_text


class LLMStreamError(LLMException):
    """Provider reported an error in the middle of a stream."""

    def __init__(self, reason: str, partial_response: str | None = None):
        super().__init__(
            f"LLM stream error: {reason}",
            context={"partial_response": partial_response}
        )
        self.partial_response = partial_response


# ============================================================================
# Chat Client Exceptions
# ============================================================================

class RewindError(InvalidArgumentError):
    """Rewind target is out of range or is not a user message."""

    def __init__(self, index: int, reason: str):
        super().__init__(f"Cannot rewind at index {index}: {reason}", field="index")
        self.index = index


class ChatStateError(SentraException):
    """Operation not allowed in the current chat phase."""

    code = "failed-precondition"
    status_code = 409

    def __init__(self, operation: str, phase: str):
        super().__init__(
            f"Cannot {operation} while chat is {phase}",
            context={"operation": operation, "phase": phase}
        )
        self.operation = operation
        self.phase = phase


class StreamError(SentraException):
    """The gateway stream ended with an error event or broke mid-read."""

    def __init__(self, message: str, partial_content: str = ""):
        super().__init__(message)
        self.partial_content = partial_content


class ChatSyncError(SentraException):
    """A chat document and its history mirror did not both change."""

    def __init__(self, chat_id: str, failures: dict[str, Exception]):
        super().__init__(
            f"Failed to update chat {chat_id}",
            context={path: str(err) for path, err in failures.items()}
        )
        self.chat_id = chat_id
        self.failures = failures
