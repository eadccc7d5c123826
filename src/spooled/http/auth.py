"""
Single-flight credential refresher.

Holds the access token, refresh token and API key for one transport and
exchanges them for a fresh access token when asked. At most one exchange is
in flight at a time; concurrent callers wait on the same task and observe
its outcome, success or error.

Exchange strategy:
    1. refresh token -> POST /api/v1/auth/refresh
    2. on an authentication failure from step 1 (not on network errors),
       API key -> POST /api/v1/auth/login
    3. neither credential -> AuthenticationError
"""

import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import pydantic

from core.errors import APIError, AuthenticationError
from core.logging import LoggedClass
from spooled import metrics
from spooled.schemas import LoginRequest, LoginResponse, RefreshRequest, RefreshResponse

LOGIN_PATH = "/api/v1/auth/login"
REFRESH_PATH = "/api/v1/auth/refresh"

DEFAULT_SAFETY_MARGIN_SECONDS = 60.0

# (path, JSON body) -> decoded JSON response; raises typed API errors
Exchange = Callable[[str, Dict[str, Any]], Awaitable[Any]]


class CredentialRefresher(LoggedClass):
    """
    Owns credential state and serializes refreshes.

    State fields are guarded by a lock; the network exchange runs outside
    it. Callers blocked on an in-flight refresh are released when it
    finishes; cancelling a waiter never cancels the shared exchange.

    Usage:
        refresher = CredentialRefresher(exchange, api_key="sk_live_...")
        await refresher.ensure_fresh()
        token = refresher.access_token
    """

    log_component = "auth"

    def __init__(
        self,
        exchange: Exchange,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        safety_margin_seconds: float = DEFAULT_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._exchange = exchange
        self._clock = clock
        self.safety_margin_seconds = safety_margin_seconds

        self._api_key = api_key
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._expires_at: Optional[float] = None

        self._lock = threading.Lock()
        self._inflight: Optional[asyncio.Task] = None
        self._refresh_count = 0
        self._failure_count = 0

        super().__init__()

    # =========================================================================
    # Credential state
    # =========================================================================

    @property
    def access_token(self) -> Optional[str]:
        with self._lock:
            return self._access_token

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    @property
    def can_refresh(self) -> bool:
        """Whether an exchange is possible at all."""
        with self._lock:
            return bool(self._refresh_token or self._api_key)

    @property
    def is_refreshing(self) -> bool:
        with self._lock:
            return self._inflight is not None and not self._inflight.done()

    def set_access_token(
        self, token: Optional[str], expires_in: Optional[float] = None
    ) -> None:
        with self._lock:
            self._access_token = token
            self._expires_at = (
                self._clock() + expires_in if expires_in is not None else None
            )

    def set_refresh_token(self, token: Optional[str]) -> None:
        with self._lock:
            self._refresh_token = token

    def seconds_until_expiry(self) -> Optional[float]:
        with self._lock:
            if self._expires_at is None:
                return None
            return self._expires_at - self._clock()

    def _needs_refresh_locked(self) -> bool:
        """Whether the access token is within the safety margin (called under lock)."""
        if not (self._refresh_token or self._api_key):
            return False
        if self._access_token is None:
            return self._refresh_token is not None
        if self._expires_at is None:
            return False
        return self._expires_at - self._clock() <= self.safety_margin_seconds

    def needs_refresh(self) -> bool:
        with self._lock:
            return self._needs_refresh_locked()

    # =========================================================================
    # Single-flight gate
    # =========================================================================

    async def ensure_fresh(self) -> None:
        """Refresh only if the access token is missing or about to expire."""
        await self._refresh(force=False)

    async def force_refresh(self) -> None:
        """Refresh unconditionally (joins an exchange already in flight)."""
        await self._refresh(force=True)

    async def _refresh(self, force: bool) -> None:
        with self._lock:
            task = self._inflight
            if task is None or task.done():
                if not force and not self._needs_refresh_locked():
                    return
                task = asyncio.ensure_future(self._run_exchange())
                task.add_done_callback(self._on_exchange_done)
                self._inflight = task
        await asyncio.shield(task)

    def _on_exchange_done(self, task: asyncio.Task) -> None:
        with self._lock:
            if self._inflight is task:
                self._inflight = None
        # Consume the outcome so an exchange whose waiters were all cancelled
        # does not log "exception was never retrieved".
        if not task.cancelled():
            task.exception()

    # =========================================================================
    # Exchange
    # =========================================================================

    async def _run_exchange(self) -> None:
        with self._lock:
            refresh_token = self._refresh_token
            api_key = self._api_key

        try:
            if refresh_token:
                try:
                    await self._refresh_with_token(refresh_token)
                    return
                except AuthenticationError as e:
                    if not api_key:
                        raise
                    self._log_exception(
                        e,
                        "Refresh token rejected, falling back to API key login",
                        level=logging.WARNING,
                        include_traceback=False,
                    )
            if api_key:
                await self._login(api_key)
                return
            raise AuthenticationError("no refresh token or API key available")
        except Exception:
            with self._lock:
                self._failure_count += 1
            raise

    async def _refresh_with_token(self, refresh_token: str) -> None:
        try:
            data = await self._exchange(
                REFRESH_PATH,
                RefreshRequest(refresh_token=refresh_token).model_dump(),
            )
            response = self._parse(RefreshResponse, data)
        except Exception:
            metrics.record_credential_refresh("refresh", success=False)
            raise
        self._store(response.access_token, response.refresh_token, response.expires_in)
        metrics.record_credential_refresh("refresh")
        self._log(
            logging.INFO,
            "Access token refreshed",
            refresh_source="refresh",
            expires_in=response.expires_in,
        )

    async def _login(self, api_key: str) -> None:
        try:
            data = await self._exchange(
                LOGIN_PATH, LoginRequest(api_key=api_key).model_dump()
            )
            response = self._parse(LoginResponse, data)
        except Exception:
            metrics.record_credential_refresh("login", success=False)
            raise
        self._store(response.access_token, response.refresh_token, response.expires_in)
        metrics.record_credential_refresh("login")
        self._log(
            logging.INFO,
            "Logged in with API key",
            refresh_source="login",
            expires_in=response.expires_in,
        )

    @staticmethod
    def _parse(model: type, data: Any) -> Any:
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise APIError(
                "invalid credential exchange response",
                code="invalid_response",
                cause=e,
            ) from e

    def _store(
        self, access_token: str, refresh_token: Optional[str], expires_in: float
    ) -> None:
        """Replace credentials atomically; a rotated refresh token is kept."""
        with self._lock:
            self._access_token = access_token
            if refresh_token:
                self._refresh_token = refresh_token
            self._expires_at = self._clock() + expires_in
            self._refresh_count += 1

    def get_diagnostics(self) -> dict:
        """Credential state without secret values."""
        with self._lock:
            return {
                "has_access_token": self._access_token is not None,
                "has_refresh_token": self._refresh_token is not None,
                "has_api_key": self._api_key is not None,
                "seconds_until_expiry": (
                    None
                    if self._expires_at is None
                    else round(self._expires_at - self._clock(), 1)
                ),
                "refreshing": self._inflight is not None and not self._inflight.done(),
                "refresh_count": self._refresh_count,
                "failure_count": self._failure_count,
            }
