"""
Resilient HTTP transport for the Spooled API.

Every resource call passes through Transport.execute(), which composes:
- Circuit breaker fast-fail
- Proactive credential refresh before sending
- Retry with exponential backoff for retry-eligible requests
- One reactive credential refresh per logical request on 401

Errors surface as typed exceptions from core.errors.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp
from pydantic import BaseModel

from core.errors import (
    AuthenticationError,
    CircuitOpenError,
    ConfigurationError,
    NetworkError,
    RateLimitError,
    SpooledError,
    ValidationError,
    error_from_response,
)
from core.errors import TimeoutError as RequestTimeoutError
from core.logging import LoggedClass
from core.resilience import CircuitBreaker, CircuitState, RetryPolicy
from spooled import metrics
from spooled.config import ClientConfig
from spooled.http.auth import CredentialRefresher


@dataclass
class Request:
    """
    One logical API call.

    Attributes:
        method: HTTP method
        path: Path relative to the base URL (e.g. /api/v1/jobs/claim)
        body: JSON-serializable body or pydantic model
        raw_body: Pre-encoded body (takes precedence over body)
        query: Query string parameters
        headers: Extra headers for this call
        use_admin_key: Authenticate with X-Admin-Key instead of a bearer token
        idempotent: Safe to repeat even though the method is not
        timeout_seconds: Override the transport timeout for this call
    """

    method: str
    path: str
    body: Any = None
    raw_body: Optional[bytes] = None
    query: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    use_admin_key: bool = False
    idempotent: bool = False
    timeout_seconds: Optional[float] = None

    def encode_body(self) -> Optional[bytes]:
        if self.raw_body is not None:
            return self.raw_body
        if self.body is None:
            return None
        if isinstance(self.body, BaseModel):
            return self.body.model_dump_json(exclude_none=True).encode()
        return json.dumps(self.body).encode()


@dataclass
class Response:
    status_code: int
    body: bytes
    headers: Dict[str, str]
    request_id: str = ""

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def json(self) -> Any:
        """Decode the body as JSON (None for an empty body)."""
        if not self.body:
            return None
        return json.loads(self.body)


class Transport(LoggedClass):
    """
    Async transport with retry, circuit breaker and credential refresh.

    Safe for concurrent use from many tasks: the breaker and refresher are
    the only shared state and each guards itself.

    Usage:
        async with Transport(ClientConfig(api_key="sk_live_...")) as transport:
            response = await transport.execute(Request("GET", "/api/v1/jobs"))
    """

    log_component = "transport"

    def __init__(
        self,
        config: ClientConfig,
        session: Optional[aiohttp.ClientSession] = None,
        breaker: Optional[CircuitBreaker] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        self.config = config
        self.base_url = config.base_url
        self._session = session
        self._owns_session = session is None

        self._policy = policy or RetryPolicy(config.retry)

        if breaker is None and config.circuit_breaker_enabled:
            breaker = CircuitBreaker(
                "spooled-api",
                config.circuit_breaker,
                on_state_change=self._on_circuit_change,
            )
        self._breaker = breaker

        self._refresher = CredentialRefresher(
            self._auth_exchange,
            api_key=config.api_key,
            access_token=config.access_token,
            refresh_token=config.refresh_token,
            safety_margin_seconds=config.refresh_margin_seconds,
        )

        super().__init__()

    @property
    def circuit_name(self) -> Optional[str]:
        return self._breaker.name if self._breaker else None

    @property
    def breaker(self) -> Optional[CircuitBreaker]:
        return self._breaker

    @property
    def refresher(self) -> CredentialRefresher:
        return self._refresher

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    async def __aenter__(self) -> "Transport":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Create aiohttp session if not exists."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=100),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _on_circuit_change(self, old: CircuitState, new: CircuitState) -> None:
        metrics.update_circuit_breaker_state("spooled-api", new)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, request: Request) -> Response:
        """
        Execute a request with the full resilience stack.

        Returns:
            Response for a 2xx/3xx status

        Raises:
            CircuitOpenError: Breaker is open (no request sent)
            APIError: Last observed error once retries are exhausted or the
                error is not retryable for this request
        """
        if request.use_admin_key and not self.config.admin_key:
            raise ConfigurationError("admin key required for this request")

        breaker = self._breaker
        if breaker is not None and not breaker.allow():
            metrics.record_circuit_rejection(breaker.name)
            self._log(
                logging.WARNING,
                "Circuit breaker open, rejecting request",
                http_method=request.method,
                path=request.path,
            )
            raise CircuitOpenError(breaker.name, breaker.retry_after())

        auto_refresh = self.config.auto_refresh_token and not request.use_admin_key
        if auto_refresh:
            try:
                await self._refresher.ensure_fresh()
            except SpooledError as e:
                # Proceed with the current credential
                self._log_exception(
                    e,
                    "Proactive credential refresh failed",
                    level=logging.WARNING,
                    include_traceback=False,
                )

        eligible = self._policy.is_retry_eligible(request.method, request.idempotent)
        refreshed = False
        skip_delay = False
        attempt = 0
        last_error: Optional[SpooledError] = None

        while attempt <= self._policy.config.max_retries:
            if attempt > 0 and not skip_delay:
                delay = self._backoff(attempt - 1, last_error)
                self._log(
                    logging.DEBUG,
                    "Retrying request",
                    http_method=request.method,
                    path=request.path,
                    attempt=attempt,
                    delay_seconds=round(delay, 3),
                )
                await asyncio.sleep(delay)
            skip_delay = False

            try:
                response = await self._send(request)
            except SpooledError as e:
                last_error = e
            else:
                if breaker is not None:
                    breaker.record_success()
                return response

            if (
                isinstance(last_error, AuthenticationError)
                and auto_refresh
                and not refreshed
                and self._refresher.can_refresh
            ):
                refreshed = True
                try:
                    await self._refresher.force_refresh()
                except SpooledError as e:
                    self._log_exception(
                        e,
                        "Credential refresh after 401 failed",
                        level=logging.WARNING,
                        include_traceback=False,
                    )
                else:
                    # Re-issue without consuming an attempt
                    skip_delay = True
                    continue

            if breaker is not None:
                breaker.record_failure(last_error)

            if not (
                eligible
                and last_error.is_retryable
                and self._policy.should_retry(attempt)
            ):
                break

            metrics.record_retry(last_error.kind.value)
            attempt += 1

        assert last_error is not None
        self._log(
            logging.DEBUG,
            "Request failed",
            http_method=request.method,
            path=request.path,
            attempt=attempt,
            error_kind=last_error.kind.value,
            http_status=getattr(last_error, "status_code", None),
        )
        raise last_error

    def _backoff(self, attempt: int, error: Optional[SpooledError]) -> float:
        """Backoff delay, stretched to honor a server-provided Retry-After."""
        delay = self._policy.delay(attempt)
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = min(max(delay, error.retry_after), self._policy.config.max_delay)
        return delay

    # =========================================================================
    # Physical call
    # =========================================================================

    def _build_headers(self, request: Request, authenticate: bool) -> Dict[str, str]:
        headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
        }
        headers.update(self.config.headers)

        if authenticate:
            if request.use_admin_key:
                headers["X-Admin-Key"] = self.config.admin_key or ""
            else:
                token = self._refresher.access_token or self._refresher.api_key
                if token:
                    headers["Authorization"] = f"Bearer {token}"

        if request.raw_body is not None or request.body is not None:
            headers["Content-Type"] = "application/json"
        headers.update(request.headers)
        return headers

    async def _send(self, request: Request, authenticate: bool = True) -> Response:
        """
        Perform exactly one HTTP call.

        Raises:
            NetworkError: Connection-level failure
            TimeoutError: No response within the timeout
            APIError subclass: Status >= 400
            ValidationError: Body could not be encoded (nothing is sent)
        """
        session = await self._ensure_session()
        url = f"{self.base_url}/{request.path.lstrip('/')}"
        headers = self._build_headers(request, authenticate)
        timeout_seconds = request.timeout_seconds or self.config.timeout_seconds
        method = request.method.upper()

        try:
            data = request.encode_body()
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Cannot encode request body for {method} {request.path}: {e}",
                code="invalid_request",
                cause=e,
            ) from e

        start = time.perf_counter()
        try:
            async with session.request(
                method,
                url,
                params=request.query,
                data=data,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout_seconds),
            ) as resp:
                body = await resp.read()
                status = resp.status
                resp_headers = dict(resp.headers)

        # aiohttp's ServerTimeoutError is also a ClientError; match timeouts first
        except asyncio.TimeoutError as e:
            metrics.record_api_request(method, "timeout", time.perf_counter() - start)
            self._log(
                logging.WARNING,
                "API request timeout",
                http_method=method,
                path=request.path,
                timeout_seconds=timeout_seconds,
            )
            raise RequestTimeoutError(timeout_seconds, cause=e) from e

        except aiohttp.ClientError as e:
            metrics.record_api_request(method, "network", time.perf_counter() - start)
            self._log_exception(
                e,
                "API connection error",
                level=logging.WARNING,
                include_traceback=False,
                http_method=method,
                path=request.path,
            )
            raise NetworkError(f"{method} {request.path} failed: {e}", cause=e) from e

        duration = time.perf_counter() - start
        metrics.record_api_request(method, str(status), duration)

        if status >= 400:
            error = error_from_response(status, body, resp_headers)
            self._log(
                logging.WARNING if status >= 500 or status == 429 else logging.DEBUG,
                "API request failed",
                http_method=method,
                path=request.path,
                http_status=status,
                error_kind=error.kind.value,
                request_id=error.request_id or None,
                duration_ms=round(duration * 1000, 1),
            )
            raise error

        response = Response(status_code=status, body=body, headers=resp_headers)
        response.request_id = response.header("X-Request-ID") or ""
        return response

    async def _auth_exchange(self, path: str, payload: Dict[str, Any]) -> Any:
        """Credential exchange call: unauthenticated, single attempt."""
        response = await self._send(
            Request("POST", path, body=payload, idempotent=True),
            authenticate=False,
        )
        return response.json()

    def get_circuit_status(self) -> Dict[str, Any]:
        """Get circuit breaker diagnostics for health checks."""
        if self._breaker is None:
            return {"state": "disabled"}
        return self._breaker.get_diagnostics()
