"""
pytest configuration for Spooled client tests.

Adds src directory to Python path for imports and provides shared
fixtures: an in-process HTTP server for the Spooled API and fast retry
settings.
"""

import sys
from pathlib import Path
from typing import Callable, Dict, List, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from core.logging import clear_log_context  # noqa: E402
from core.resilience import CircuitBreakerConfig, RetryConfig  # noqa: E402
from spooled.config import ClientConfig  # noqa: E402

# Retries fast enough for tests
FAST_RETRY = RetryConfig(max_retries=3, base_delay=0.001, max_delay=0.01, jitter=False)


class FakeApi:
    """
    Scriptable stand-in for the Spooled API.

    Each route gets a list of queued (status, json_body, headers) responses;
    the last one repeats once the queue drains. Every request is recorded.
    """

    def __init__(self):
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self._dispatch)
        self.routes: Dict[Tuple[str, str], List[tuple]] = {}
        self.handlers: Dict[Tuple[str, str], Callable] = {}
        self.requests: List[dict] = []
        self.server = None

    def respond(self, method: str, path: str, *responses: tuple) -> None:
        """Queue responses: each is (status, body) or (status, body, headers)."""
        self.routes[(method.upper(), path)] = list(responses)

    def handle(self, method: str, path: str, handler: Callable) -> None:
        """Route to an async handler(request) -> web.Response."""
        self.handlers[(method.upper(), path)] = handler

    def calls(self, method: str, path: str) -> List[dict]:
        return [
            r for r in self.requests if r["method"] == method.upper() and r["path"] == path
        ]

    async def _dispatch(self, request: web.Request) -> web.StreamResponse:
        body = await request.read()
        self.requests.append(
            {
                "method": request.method,
                "path": request.path,
                "headers": dict(request.headers),
                "body": body,
                "json": await request.json() if body else None,
            }
        )
        key = (request.method, request.path)
        if key in self.handlers:
            return await self.handlers[key](request)
        queued = self.routes.get(key)
        if not queued:
            return web.json_response({"code": "not_found", "message": "no route"}, status=404)
        entry = queued.pop(0) if len(queued) > 1 else queued[0]
        status, payload = entry[0], entry[1]
        headers = entry[2] if len(entry) > 2 else None
        if payload is None:
            return web.Response(status=status, headers=headers)
        return web.json_response(payload, status=status, headers=headers)

    async def start(self) -> str:
        self.server = TestServer(self.app)
        await self.server.start_server()
        return str(self.server.make_url("")).rstrip("/")

    async def close(self) -> None:
        if self.server is not None:
            await self.server.close()


@pytest_asyncio.fixture
async def fake_api():
    api = FakeApi()
    api.base_url = await api.start()
    yield api
    await api.close()


@pytest.fixture
def make_config(fake_api):
    """Build a ClientConfig pointing at the fake API."""

    def _make(**overrides) -> ClientConfig:
        params = {
            "base_url": fake_api.base_url,
            "api_key": "sk_test_key",
            "retry": FAST_RETRY,
            "circuit_breaker": CircuitBreakerConfig(
                failure_threshold=5, success_threshold=3, open_timeout_seconds=30
            ),
            "timeout_seconds": 5.0,
        }
        params.update(overrides)
        return ClientConfig(**params)

    return _make


@pytest.fixture(autouse=True)
def reset_log_context():
    clear_log_context()
    yield
    clear_log_context()
