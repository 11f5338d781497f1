"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Service Layer Philosophy:
    Services encapsulate business logic separate from views, consumers and
    models. Views and consumers handle transport concerns, models handle
    data, services handle the rules.

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, membership,
      duplicates). The failure carries the exception class from
      ``core.exceptions`` that describes it, so the boundary can pick the
      HTTP status without a lookup table.
    - Exceptions: Use for unexpected failures (bugs). Database I/O errors
      are converted by ``BaseService.handle_exception``.

Usage:
    from core.exceptions import PermissionDeniedError
    from core.services import BaseService, ServiceResult

    class MessageService(BaseService):
        @classmethod
        def send_message(cls, conversation_id, sender, body) -> ServiceResult[Message]:
            if not Participant.objects.filter(...).exists():
                return ServiceResult.from_error(
                    PermissionDeniedError("Not a participant", error_code="NOT_PARTICIPANT")
                )

            with cls.atomic():
                message = Message.objects.create(...)

            cls.get_logger().info(f"Message {message.id} sent")
            return ServiceResult.success(message)

    # In view
    result = MessageService.send_message(conversation_id, request.user, body)
    if result.success:
        return Response(MessageSerializer(result.data).data, status=201)
    return Response(result.to_response(), status=result.http_status)

Related:
    - core.exceptions: The error taxonomy
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import InterfaceError, OperationalError, transaction

from core.exceptions import (
    BaseApplicationError,
    TransientServiceError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures
        error_type: Exception class from core.exceptions describing the failure

    Usage:
        return ServiceResult.success(conversation)

        return ServiceResult.failure(
            "Group name is required",
            error_code="NAME_REQUIRED",
            error_type=ValidationError,
        )

        result = ConversationService.create_group(user, name, member_ids)
        if not result:
            log(result.error_code)
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    error_type: type[BaseApplicationError] | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        error_type: type[BaseApplicationError] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
            error_type: Error class; defaults to ValidationError

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            error_type=error_type or ValidationError,
        )

    @classmethod
    def from_error(cls, exc: BaseApplicationError) -> ServiceResult[T]:
        """
        Create a failed result from an application error instance.

        Example:
            return ServiceResult.from_error(
                NotFoundError("Message not found", error_code="MESSAGE_NOT_FOUND")
            )
        """
        errors = exc.details.get("errors") if exc.details else None
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.error_code,
            errors=errors,
            error_type=type(exc),
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from any caught exception.

        Application errors keep their own code and class; other exceptions
        are reported under the class name.
        """
        if isinstance(exc, BaseApplicationError):
            result = cls.from_error(exc)
            if error_code:
                result.error_code = error_code
            return result
        return cls(
            success=False,
            error=str(exc),
            error_code=error_code or exc.__class__.__name__.upper(),
            error_type=BaseApplicationError,
        )

    @property
    def http_status(self) -> int:
        """Status code for the HTTP boundary (200 for successes)."""
        if self.success:
            return 200
        return (self.error_type or BaseApplicationError).http_status

    def is_error(self, error_type: type[BaseApplicationError]) -> bool:
        """Return True when this is a failure of the given kind."""
        return (
            not self.success
            and self.error_type is not None
            and issubclass(self.error_type, error_type)
        )

    def to_response(self) -> dict[str, Any]:
        """
        Convert to API response format.

        Example:
            return Response(result.to_response(), status=result.http_status)
        """
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management
    - Exception handling patterns

    Design Notes:
        - Use @classmethod (no instance state)
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the service class for easy filtering."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around Django's transaction.atomic() that makes
        transaction boundaries explicit in service code.
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Convert exception to ServiceResult with logging.

        Database connectivity errors become TransientServiceError so the
        client sees a retryable 503 instead of a 500.

        Example:
            try:
                ...
            except OperationalError as e:
                return cls.handle_exception(e, "send message")
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message, exc_info=True)

        if isinstance(exc, (OperationalError, InterfaceError)):
            return ServiceResult.from_error(
                TransientServiceError("Service temporarily unavailable")
            )
        return ServiceResult.from_exception(exc)

    @classmethod
    def validate_required(cls, **kwargs) -> ServiceResult | None:
        """
        Validate that required fields are provided.

        Returns a failure result if any required field is None or empty.
        Returns None if all fields are valid.

        Example:
            validation = cls.validate_required(conversation_id=conversation_id)
            if validation is not None:
                return validation
        """
        errors = {}
        for field_name, value in kwargs.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[field_name] = ["This field is required."]

        if errors:
            return ServiceResult.failure(
                "Required fields missing",
                error_code="VALIDATION_ERROR",
                errors=errors,
                error_type=ValidationError,
            )
        return None
