"""
Core Exceptions
================

Custom exceptions for the SLA engine.

These exceptions define domain-specific errors that can be caught and handled
at the engine and HTTP boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class NotificationException(ExternalServiceException):
    """Exception for notification sink failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Sink", message, details)


class CollaboratorTimeoutException(ExternalServiceException):
    """Raised when a collaborator call exceeds its time budget."""

    def __init__(
        self,
        service_name: str,
        timeout_seconds: float,
        details: Optional[dict] = None
    ):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            service_name,
            f"timed out after {timeout_seconds:.1f}s",
            details
        )


class EvaluationAbortedException(ApplicationException):
    """
    Fatal error that aborts a whole evaluation pass.

    Raised when the clock cannot be read or the ticket store cannot be
    listed at all. The scheduler logs it; "run now" reports failure.
    """
