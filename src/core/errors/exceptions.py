"""
Exception types and error classification for the Spooled client.

Provides:
- ErrorCategory enum for coarse retry/routing decisions
- ErrorKind enum for the fine-grained error taxonomy
- Typed exception hierarchy for transport and runtime errors
- Parsing of HTTP error responses into typed exceptions
- Classification utilities
"""

import json
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., network timeouts, 429/5xx errors)
        AUTH: Authentication failures requiring credential refresh (401)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., 403, 404, validation errors, configuration issues)
        CIRCUIT_OPEN: Circuit breaker is open, rejecting fast without attempting
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown"


class ErrorKind(Enum):
    """Fine-grained error taxonomy callers can branch on."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit_open"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.TIMEOUT,
        ErrorKind.SERVER,
        ErrorKind.RATE_LIMIT,
    }
)


class SpooledError(Exception):
    """
    Base exception for all client errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for routing decisions
        kind: Position in the error taxonomy
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether the generic retry loop may retry this error."""
        return self.kind in RETRYABLE_KINDS

    @property
    def should_refresh_auth(self) -> bool:
        """Whether this error should trigger a credential refresh."""
        return self.category == ErrorCategory.AUTH

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# HTTP API Errors
# =============================================================================


class APIError(SpooledError):
    """
    Error returned by the remote API.

    Used directly for 4xx statuses without a dedicated subclass.
    """

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        message: str = "",
        status_code: Optional[int] = None,
        code: str = "",
        details: Optional[Dict[str, Any]] = None,
        request_id: str = "",
        raw_body: bytes = b"",
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        self.request_id = request_id
        self.raw_body = raw_body
        super().__init__(message, cause, context)

    def __str__(self) -> str:
        status = self.status_code if self.status_code is not None else 0
        if self.message:
            text = f"[{status}] {self.code}: {self.message}" if self.code else f"[{status}] {self.message}"
        elif self.code:
            text = f"[{status}] {self.code}"
        else:
            text = f"[{status}] unknown error"
        if self.cause:
            text = f"{text} | Caused by: {self.cause}"
        return text


class AuthenticationError(APIError):
    """Credential missing, invalid or expired (401)."""

    category = ErrorCategory.AUTH
    kind = ErrorKind.AUTHENTICATION


class AuthorizationError(APIError):
    """Access denied (403) - permissions issue, not auth."""

    kind = ErrorKind.AUTHORIZATION


class NotFoundError(APIError):
    """Resource not found (404)."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(APIError):
    """Resource state conflict (409)."""

    kind = ErrorKind.CONFLICT


class ValidationError(APIError):
    """Request rejected as invalid (400/422)."""

    kind = ErrorKind.VALIDATION


class PayloadTooLargeError(APIError):
    """Request body too large (413)."""

    kind = ErrorKind.PAYLOAD_TOO_LARGE


class RateLimitError(APIError):
    """Rate limited (429) - should back off."""

    category = ErrorCategory.TRANSIENT
    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str = "",
        retry_after: Optional[float] = None,
        limit: Optional[int] = None,
        remaining: Optional[int] = None,
        reset: Optional[datetime] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after  # Seconds to wait if provided
        self.limit = limit
        self.remaining = remaining
        self.reset = reset


class ServerError(APIError):
    """Server-side failure (5xx)."""

    category = ErrorCategory.TRANSIENT
    kind = ErrorKind.SERVER


# =============================================================================
# Transport Errors (no HTTP response)
# =============================================================================


class NetworkError(APIError):
    """Network connection failed (DNS, refused, reset, etc)."""

    category = ErrorCategory.TRANSIENT
    kind = ErrorKind.NETWORK

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, code="network_error", cause=cause)


class TimeoutError(APIError):
    """Request timed out."""

    category = ErrorCategory.TRANSIENT
    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        timeout_seconds: float,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            f"request timed out after {timeout_seconds}s",
            code="timeout",
            cause=cause,
        )
        self.timeout_seconds = timeout_seconds


class CircuitOpenError(APIError):
    """Circuit breaker is open, rejecting requests."""

    category = ErrorCategory.CIRCUIT_OPEN
    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, circuit_name: str, retry_after: float = 0.0):
        super().__init__(
            f"Circuit '{circuit_name}' is open",
            code="circuit_breaker_open",
            context={"circuit_name": circuit_name},
        )
        self.circuit_name = circuit_name
        self.retry_after = retry_after


# =============================================================================
# Client-side Errors
# =============================================================================


class ConfigurationError(SpooledError):
    """Invalid client configuration."""

    category = ErrorCategory.PERMANENT


class WorkerError(SpooledError):
    """Worker lifecycle misuse (e.g. starting twice, no handler)."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Response Parsing
# =============================================================================

_STATUS_ERRORS = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
    413: PayloadTooLargeError,
    422: ValidationError,
}


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup for plain dicts and multidicts."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header.

    Accepts either delta-seconds or an HTTP-date.

    Returns:
        Seconds to wait, or None if absent/unparseable
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def error_from_response(
    status_code: int,
    body: bytes,
    headers: Optional[Mapping[str, str]] = None,
) -> APIError:
    """
    Create the typed exception for an HTTP error response.

    Understands both `{code, message, details}` and `{error}` body shapes.

    Args:
        status_code: HTTP response status (>= 400)
        body: Raw response body
        headers: Response headers

    Returns:
        APIError subclass matching the status
    """
    headers = headers or {}
    fields: Dict[str, Any] = {
        "status_code": status_code,
        "request_id": _header(headers, "X-Request-ID") or "",
        "raw_body": body,
    }

    message = ""
    if body:
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            payload = None
        if isinstance(payload, dict):
            fields["code"] = str(payload.get("code") or "")
            message = str(payload.get("message") or "")
            details = payload.get("details")
            if isinstance(details, dict):
                fields["details"] = details
            if not message and payload.get("error"):
                message = str(payload["error"])

    if status_code == 429:
        reset_ts = _parse_int(_header(headers, "X-RateLimit-Reset"))
        return RateLimitError(
            message,
            retry_after=parse_retry_after(_header(headers, "Retry-After")),
            limit=_parse_int(_header(headers, "X-RateLimit-Limit")),
            remaining=_parse_int(_header(headers, "X-RateLimit-Remaining")),
            reset=(
                datetime.fromtimestamp(reset_ts, tz=timezone.utc)
                if reset_ts is not None
                else None
            ),
            **fields,
        )

    error_class = _STATUS_ERRORS.get(status_code)
    if error_class is None:
        error_class = ServerError if status_code >= 500 else APIError
    return error_class(message, **fields)


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorKind:
    """
    Classify an HTTP status code into the error taxonomy.

    Args:
        status_code: HTTP response status

    Returns:
        Matching ErrorKind (UNKNOWN for non-error or unmapped statuses)
    """
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if status_code in _STATUS_ERRORS:
        return _STATUS_ERRORS[status_code].kind
    if status_code >= 500:
        return ErrorKind.SERVER
    return ErrorKind.UNKNOWN


def error_kind(exc: BaseException) -> ErrorKind:
    """Get the taxonomy kind of any exception (UNKNOWN if unclassified)."""
    if isinstance(exc, SpooledError):
        return exc.kind
    return ErrorKind.UNKNOWN


def is_retryable_error(exc: BaseException) -> bool:
    """True if the generic retry loop may retry this error."""
    return isinstance(exc, SpooledError) and exc.is_retryable


def is_auth_error(exc: BaseException) -> bool:
    """True for 401 authentication failures."""
    return isinstance(exc, AuthenticationError)


def is_not_found_error(exc: BaseException) -> bool:
    return isinstance(exc, NotFoundError)


def is_rate_limit_error(exc: BaseException) -> bool:
    return isinstance(exc, RateLimitError)


def is_validation_error(exc: BaseException) -> bool:
    return isinstance(exc, ValidationError)
