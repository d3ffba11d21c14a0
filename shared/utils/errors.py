"""
Custom error classes for the aggregation services.

Provides structured error handling with error codes,
context information, and proper exception chaining.
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass


@dataclass
class ErrorContext:
    """Error context information."""
    service: str
    operation: str
    job_id: Optional[str] = None
    account: Optional[str] = None
    correlation_id: Optional[str] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = {}


class DataProcessingError(Exception):
    """Base exception for aggregation errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        result = {
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

        if self.context:
            result["context"] = {
                "service": self.context.service,
                "operation": self.context.operation,
                "job_id": self.context.job_id,
                "account": self.context.account,
                "correlation_id": self.context.correlation_id,
                "metadata": self.context.metadata,
            }

        return result


class ValidationError(DataProcessingError):
    """Error raised when request validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            context=context,
            details=details or {}
        )
        self.field = field
        self.value = value

        if field:
            self.details["field"] = field
        if value is not None:
            self.details["value"] = str(value)


class NoCompatibleProvidersError(DataProcessingError):
    """Raised when a valid request yields no (provider, chain, account) combos."""

    def __init__(
        self,
        message: str,
        accounts: Optional[List[str]] = None,
        chains: Optional[List[str]] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="NO_COMPATIBLE_PROVIDERS",
            context=context,
            details=details or {}
        )
        self.accounts = accounts or []
        self.chains = chains or []

        if accounts:
            self.details["accounts"] = list(accounts)
        if chains:
            self.details["chains"] = list(chains)


class StoreUnavailableError(DataProcessingError):
    """Error raised when the shared job store cannot be reached."""

    retryable = True

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="STORE_UNAVAILABLE",
            context=context,
            details=details or {}
        )
        self.operation = operation

        if operation:
            self.details["operation"] = operation


class JobNotFoundError(DataProcessingError):
    """Raised when a job id is unknown or its state has expired."""

    def __init__(
        self,
        job_id: str,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=f"Aggregation job {job_id} not found",
            error_code="JOB_NOT_FOUND",
            context=context,
            details=details or {}
        )
        self.job_id = job_id
        self.details["job_id"] = job_id


class PublishError(DataProcessingError):
    """Error raised when a message cannot be handed to the bus."""

    retryable = True

    def __init__(
        self,
        message: str,
        topic: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="PUBLISH_ERROR",
            context=context,
            details=details or {}
        )
        self.topic = topic

        if topic:
            self.details["topic"] = topic


class ConfigurationError(DataProcessingError):
    """Error raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        setting: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            context=context,
            details=details or {}
        )
        self.setting = setting

        if setting:
            self.details["setting"] = setting


def create_error_context(
    service: str,
    operation: str,
    job_id: Optional[str] = None,
    account: Optional[str] = None,
    correlation_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> ErrorContext:
    """Create error context."""
    return ErrorContext(
        service=service,
        operation=operation,
        job_id=job_id,
        account=account,
        correlation_id=correlation_id,
        metadata=metadata or {}
    )
