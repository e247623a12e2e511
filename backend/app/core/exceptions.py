# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the TutorDesk scheduling engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Default conversion to HTTPException (override in subclasses)."""
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=HTTP_422_UNPROCESSABLE,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ForbiddenException(DomainException):
    """Raised when the acting user may not perform an action."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class InvalidRequestException(ValidationException):
    """Raised for malformed parameters (duration, date range, missing fields)."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_REQUEST", details=details or {})


class InsufficientCreditsException(BusinessRuleException):
    """Raised when a wallet or course ledger cannot cover a debit."""

    def __init__(
        self,
        required: int,
        available: int,
        *,
        scope: str = "wallet",
        message: Optional[str] = None,
    ):
        super().__init__(
            message=message or f"Insufficient {scope} credits: {required} required, {available} available",
            code="INSUFFICIENT_CREDITS",
            details={"required": required, "available": available, "scope": scope},
        )


class SlotConflictException(ConflictException):
    """Raised when a chosen instant overlaps an existing commitment."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing lesson",
            code="SLOT_CONFLICT",
            details=details or {},
        )


class RescheduleLimitExceededException(BusinessRuleException):
    """Raised when a lesson has used all of its allowed reschedules."""

    def __init__(self, reschedule_count: int, max_reschedules: int):
        super().__init__(
            message=f"Maximum reschedules reached for this lesson ({max_reschedules})",
            code="RESCHEDULE_LIMIT_EXCEEDED",
            details={
                "reschedule_count": reschedule_count,
                "max_reschedules": max_reschedules,
            },
        )


class InvalidTransitionException(ConflictException):
    """Raised when a lifecycle event is not legal from the current status."""

    def __init__(self, current_status: str, event: str):
        super().__init__(
            message=f"Cannot apply '{event}' to a lesson in status {current_status}",
            code="INVALID_TRANSITION",
            details={"status": current_status, "event": event},
        )


class TimeZoneResolutionFailed(DomainException):
    """Raised internally when a tutor time zone cannot be resolved; callers degrade to UTC."""

    def __init__(self, timezone_name: Optional[str]):
        super().__init__(
            message=f"Unknown time zone '{timezone_name}'",
            code="TIMEZONE_RESOLUTION_FAILED",
            details={"timezone": timezone_name},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
