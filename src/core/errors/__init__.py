"""
Error classification and exception hierarchy.

Provides:
- ErrorKind / ErrorCategory enums for classifying errors
- SpooledError hierarchy for typed exceptions
- HTTP error response parsing
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    # Enums
    ErrorCategory,
    ErrorKind,
    RETRYABLE_KINDS,
    # Base classes
    SpooledError,
    APIError,
    # API errors
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ConflictError,
    ValidationError,
    PayloadTooLargeError,
    RateLimitError,
    ServerError,
    # Transport errors
    NetworkError,
    TimeoutError,
    CircuitOpenError,
    # Client-side errors
    ConfigurationError,
    WorkerError,
    # Parsing
    error_from_response,
    parse_retry_after,
    # Classification utilities
    classify_http_status,
    error_kind,
    is_retryable_error,
    is_auth_error,
    is_not_found_error,
    is_rate_limit_error,
    is_validation_error,
)

__all__ = [
    "ErrorCategory",
    "ErrorKind",
    "RETRYABLE_KINDS",
    "SpooledError",
    "APIError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "PayloadTooLargeError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "TimeoutError",
    "CircuitOpenError",
    "ConfigurationError",
    "WorkerError",
    "error_from_response",
    "parse_retry_after",
    "classify_http_status",
    "error_kind",
    "is_retryable_error",
    "is_auth_error",
    "is_not_found_error",
    "is_rate_limit_error",
    "is_validation_error",
]
