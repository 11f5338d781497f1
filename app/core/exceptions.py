"""
Base exception classes for application-wide error handling.

Every expected failure in the service layer is described by one of these
classes. Services do not raise them; they wrap them in a ``ServiceResult``
(see ``core.services``). The HTTP and WebSocket boundaries read
``http_status`` and ``error_code`` from the class to build the response.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed input (empty body, blank group name)
    ├── PermissionDeniedError - Identity is not allowed (not a participant)
    ├── NotFoundError - Referenced conversation/message/reaction is missing
    ├── ConflictError - Uniqueness violations (duplicate reaction, member)
    └── ExternalServiceError - A collaborator (database, cache, broker) failed
        └── TransientServiceError - Retryable I/O failure

Usage:
    from core.exceptions import NotFoundError

    raise NotFoundError("Message not found", error_code="MESSAGE_NOT_FOUND")

    # Or, in a service
    return ServiceResult.from_error(
        PermissionDeniedError("Not a participant", error_code="NOT_PARTICIPANT")
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, ids, etc.)
        http_status: Status code the HTTP boundary responds with
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Message not found",
                "error_code": "MESSAGE_NOT_FOUND",
                "details": {"message_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for service-layer checks such as an empty message body or a
    thread reply whose conversation does not match its parent. DRF
    serializer validation stays in the serializers.
    """

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        raise NotFoundError(
            "Conversation not found",
            error_code="CONVERSATION_NOT_FOUND",
            details={"conversation_id": str(conversation_id)},
        )
    """

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller is authenticated but not allowed to act.

    Use for membership checks (sending into a conversation the user does
    not participate in) and for operations that are invalid for the
    conversation kind (removing a member from a private conversation).
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for duplicate entries, whether caught by an explicit existence
    check or by a unique constraint firing under concurrency.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when a collaborator outside the process fails.

    Log the original error for debugging but don't expose internal
    details to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502


class TransientServiceError(ExternalServiceError):
    """
    Raised for retryable I/O failures (database connection dropped,
    cache or broker briefly unavailable).

    Clients may retry the same request.
    """

    default_error_code: str = "SERVICE_UNAVAILABLE"
    http_status: int = 503
