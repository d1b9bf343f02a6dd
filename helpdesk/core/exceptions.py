"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. The learning queue relies on the
split between retryable failures (provider, malformed output), quota denials
and non-retryable validation errors.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    retryable = False

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors. Never retried."""


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


class ProviderException(ExternalServiceException):
    """Network, timeout or provider-side failure of a model call."""

    retryable = True

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Model Provider", message, details)


class MalformedResponseException(ExternalServiceException):
    """Model output could not be parsed into the expected structure."""

    retryable = True

    def __init__(self, message: str, raw: str = "", details: Optional[dict] = None):
        self.raw = raw
        super().__init__("Model Provider", message, details)


class VectorStoreException(ExternalServiceException):
    """Exception for vector store failures."""

    retryable = True

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Vector Store", message, details)


class QuotaDeniedException(DomainException):
    """
    The rate / cost governor refused an external call.

    The caller must not call the provider. `limit` names the violated
    limit; `halts_sweep` tells a queue sweep whether the remaining items
    would certainly be denied too.
    """

    def __init__(
        self,
        reason: str,
        limit: str,
        halts_sweep: bool = False,
        details: Optional[dict] = None
    ):
        self.reason = reason
        self.limit = limit
        self.halts_sweep = halts_sweep
        super().__init__(reason, details or {"limit": limit})
