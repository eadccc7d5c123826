"""
Tests for CredentialRefresher.

Test Coverage:
    - Single-flight: concurrent callers share one exchange
    - Refresh token -> API key login fallback on 401 only
    - Rotated refresh tokens are kept
    - Proactive refresh inside the safety margin
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from core.errors import APIError, AuthenticationError, NetworkError
from spooled.http.auth import LOGIN_PATH, REFRESH_PATH, CredentialRefresher


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def token_response(access="at_new", refresh="rt_new", expires_in=3600):
    return {
        "access_token": access,
        "refresh_token": refresh,
        "token_type": "Bearer",
        "expires_in": expires_in,
    }


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(self):
        release = asyncio.Event()
        calls = []

        async def exchange(path, payload):
            calls.append(path)
            await release.wait()
            return token_response()

        refresher = CredentialRefresher(exchange, refresh_token="rt_old")

        waiters = [asyncio.create_task(refresher.force_refresh()) for _ in range(10)]
        await asyncio.sleep(0.01)
        assert refresher.is_refreshing
        release.set()
        await asyncio.gather(*waiters)

        assert calls == [REFRESH_PATH]
        assert refresher.access_token == "at_new"
        assert not refresher.is_refreshing

    @pytest.mark.asyncio
    async def test_waiters_all_observe_failure(self):
        release = asyncio.Event()

        async def exchange(path, payload):
            await release.wait()
            raise NetworkError("connection refused")

        refresher = CredentialRefresher(exchange, refresh_token="rt_old")
        waiters = [asyncio.create_task(refresher.force_refresh()) for _ in range(5)]
        await asyncio.sleep(0.01)
        release.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(r, NetworkError) for r in results)
        assert refresher.get_diagnostics()["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_exchange(self):
        release = asyncio.Event()

        async def exchange(path, payload):
            await release.wait()
            return token_response()

        refresher = CredentialRefresher(exchange, refresh_token="rt_old")
        first = asyncio.create_task(refresher.force_refresh())
        second = asyncio.create_task(refresher.force_refresh())
        await asyncio.sleep(0.01)

        first.cancel()
        release.set()
        await second

        assert refresher.access_token == "at_new"

    @pytest.mark.asyncio
    async def test_next_refresh_starts_new_exchange(self):
        exchange = AsyncMock(side_effect=[token_response("at_1"), token_response("at_2")])
        refresher = CredentialRefresher(exchange, refresh_token="rt")

        await refresher.force_refresh()
        await refresher.force_refresh()

        assert exchange.await_count == 2
        assert refresher.access_token == "at_2"


class TestExchangeStrategy:
    @pytest.mark.asyncio
    async def test_refresh_token_preferred(self):
        exchange = AsyncMock(return_value=token_response())
        refresher = CredentialRefresher(exchange, api_key="sk", refresh_token="rt_old")

        await refresher.force_refresh()

        exchange.assert_awaited_once_with(REFRESH_PATH, {"refresh_token": "rt_old"})

    @pytest.mark.asyncio
    async def test_falls_back_to_login_on_rejected_refresh(self):
        exchange = AsyncMock(
            side_effect=[
                AuthenticationError("expired", status_code=401),
                token_response("at_login", "rt_login"),
            ]
        )
        refresher = CredentialRefresher(exchange, api_key="sk_key", refresh_token="rt_old")

        await refresher.force_refresh()

        assert [c.args[0] for c in exchange.await_args_list] == [REFRESH_PATH, LOGIN_PATH]
        assert exchange.await_args_list[1].args[1] == {"api_key": "sk_key"}
        assert refresher.access_token == "at_login"

    @pytest.mark.asyncio
    async def test_no_fallback_on_network_error(self):
        exchange = AsyncMock(side_effect=NetworkError("refused"))
        refresher = CredentialRefresher(exchange, api_key="sk", refresh_token="rt")

        with pytest.raises(NetworkError):
            await refresher.force_refresh()
        assert exchange.await_count == 1

    @pytest.mark.asyncio
    async def test_rejected_refresh_without_api_key_raises(self):
        exchange = AsyncMock(side_effect=AuthenticationError(status_code=401))
        refresher = CredentialRefresher(exchange, refresh_token="rt")

        with pytest.raises(AuthenticationError):
            await refresher.force_refresh()

    @pytest.mark.asyncio
    async def test_api_key_only_logs_in(self):
        exchange = AsyncMock(return_value=token_response())
        refresher = CredentialRefresher(exchange, api_key="sk")

        await refresher.force_refresh()

        exchange.assert_awaited_once_with(LOGIN_PATH, {"api_key": "sk"})

    @pytest.mark.asyncio
    async def test_no_credentials(self):
        exchange = AsyncMock()
        refresher = CredentialRefresher(exchange, access_token="at")

        with pytest.raises(AuthenticationError, match="no refresh token or API key"):
            await refresher.force_refresh()
        exchange.assert_not_awaited()
        assert not refresher.can_refresh

    @pytest.mark.asyncio
    async def test_keeps_rotated_refresh_token(self):
        exchange = AsyncMock(return_value=token_response(refresh="rt_rotated"))
        refresher = CredentialRefresher(exchange, refresh_token="rt_old")

        await refresher.force_refresh()
        await refresher.force_refresh()

        assert exchange.await_args_list[1].args[1] == {"refresh_token": "rt_rotated"}

    @pytest.mark.asyncio
    async def test_keeps_old_refresh_token_when_not_rotated(self):
        exchange = AsyncMock(return_value=token_response(refresh=None))
        refresher = CredentialRefresher(exchange, refresh_token="rt_old")

        await refresher.force_refresh()
        await refresher.force_refresh()

        assert exchange.await_args_list[1].args[1] == {"refresh_token": "rt_old"}

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        exchange = AsyncMock(return_value={"unexpected": True})
        refresher = CredentialRefresher(exchange, refresh_token="rt")

        with pytest.raises(APIError) as exc_info:
            await refresher.force_refresh()
        assert exc_info.value.code == "invalid_response"


class TestProactiveRefresh:
    @pytest.mark.asyncio
    async def test_skips_when_token_is_fresh(self):
        clock = FakeClock()
        exchange = AsyncMock(return_value=token_response())
        refresher = CredentialRefresher(exchange, refresh_token="rt", clock=clock)
        refresher.set_access_token("at", expires_in=3600)

        await refresher.ensure_fresh()

        exchange.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refreshes_inside_safety_margin(self):
        clock = FakeClock()
        exchange = AsyncMock(return_value=token_response())
        refresher = CredentialRefresher(
            exchange, refresh_token="rt", safety_margin_seconds=60, clock=clock
        )
        refresher.set_access_token("at", expires_in=3600)

        clock.now = 3541
        await refresher.ensure_fresh()

        exchange.assert_awaited_once()
        assert refresher.seconds_until_expiry() == pytest.approx(3600)

    @pytest.mark.asyncio
    async def test_missing_access_token_with_refresh_token(self):
        exchange = AsyncMock(return_value=token_response())
        refresher = CredentialRefresher(exchange, refresh_token="rt")
        assert refresher.needs_refresh()

        await refresher.ensure_fresh()
        assert refresher.access_token == "at_new"

    def test_unknown_expiry_never_needs_refresh(self):
        refresher = CredentialRefresher(AsyncMock(), refresh_token="rt", access_token="at")
        assert not refresher.needs_refresh()

    def test_api_key_alone_does_not_need_refresh(self):
        refresher = CredentialRefresher(AsyncMock(), api_key="sk")
        assert not refresher.needs_refresh()

    def test_diagnostics_hide_secrets(self):
        refresher = CredentialRefresher(
            AsyncMock(), api_key="sk_secret", access_token="at_secret", refresh_token="rt_secret"
        )
        text = repr(refresher.get_diagnostics())
        assert "secret" not in text
