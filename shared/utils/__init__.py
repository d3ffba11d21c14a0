"""
Utility modules for the aggregation services.

Provides common utilities for:
- Structured logging
- OpenTelemetry tracing
- Error handling
- Deterministic identifiers
"""

from .logging import setup_logging
from .tracing import setup_tracing
from .errors import (
    DataProcessingError,
    ValidationError,
    NoCompatibleProvidersError,
    StoreUnavailableError,
    JobNotFoundError,
    PublishError,
)

__all__ = [
    "setup_logging",
    "setup_tracing",
    "DataProcessingError",
    "ValidationError",
    "NoCompatibleProvidersError",
    "StoreUnavailableError",
    "JobNotFoundError",
    "PublishError",
]
