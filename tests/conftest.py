"""Pytest configuration and shared fixtures."""

import asyncio
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from arkdash.core.config import get_settings
from arkdash.realtime.channel_manager import ChannelManager, reset_channel_manager
from arkdash.services.job_tracking.tracker import get_job_tracker

ENDPOINT = "http://backend.test:4000"
TOKEN = "test-token"


# =============================================================================
# Fake Socket.IO client
# =============================================================================


class FakeSocket:
    """Stand-in for socketio.AsyncClient that records traffic.

    Server-side behaviour is driven from tests with ``server_emit`` and
    ``drop``.
    """

    def __init__(self, fail: Exception | None = None) -> None:
        self.handlers: dict[str, Callable[..., Any]] = {}
        self.emitted: list[tuple[str, Any]] = []
        self.url: str | None = None
        self.connect_kwargs: dict[str, Any] = {}
        self.connected = False
        self.disconnect_calls = 0
        self.sid: str | None = None
        self._fail = fail

    def on(self, event: str, handler: Callable[..., Any] | None = None) -> None:
        self.handlers[event] = handler

    async def connect(self, url: str, **kwargs: Any) -> None:
        self.url = url
        self.connect_kwargs = kwargs
        if self._fail is not None:
            raise self._fail
        self.connected = True
        self.sid = "fake-sid"

    async def emit(self, event: str, data: Any = None) -> None:
        self.emitted.append((event, data))

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    async def server_emit(self, event: str, data: Any) -> None:
        await self.handlers["*"](event, data)

    async def drop(self, reason: str = "transport close") -> None:
        self.connected = False
        await self.handlers["disconnect"](reason)

    def events(self, name: str) -> list[Any]:
        return [data for event, data in self.emitted if event == name]


class FakeSocketFactory:
    """Builds FakeSockets; the next ``failures`` handshakes raise ``error``."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.failures = 0
        self.error: Exception | None = None

    def __call__(self) -> FakeSocket:
        fail = None
        if self.failures > 0:
            self.failures -= 1
            fail = self.error or SocketIOConnectionError("Connection refused by the server")
        sock = FakeSocket(fail)
        self.sockets.append(sock)
        return sock

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


# =============================================================================
# HTTP transports
# =============================================================================


def health_transport(status_code: int = 200) -> httpx.MockTransport:
    """Transport whose /health answers with ``status_code``."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"status": "ok"})

    return httpx.MockTransport(handler)


def unreachable_transport() -> httpx.MockTransport:
    """Transport that times out every request."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    return httpx.MockTransport(handler)


async def settle(rounds: int = 5) -> None:
    """Let spawned emit/close tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll ``predicate`` until true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.001)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _fresh_singletons():
    """Each test gets fresh settings and no shared manager/tracker."""
    get_settings.cache_clear()
    get_job_tracker.cache_clear()
    reset_channel_manager()
    yield
    get_job_tracker.cache_clear()
    reset_channel_manager()
    get_settings.cache_clear()


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()


@pytest.fixture
def make_manager(socket_factory: FakeSocketFactory) -> Callable[..., ChannelManager]:
    """Build a ChannelManager with fake sockets and millisecond backoff."""

    def factory(**overrides: Any) -> ChannelManager:
        options: dict[str, Any] = {
            "socket_factory": socket_factory,
            "http_transport": health_transport(),
            "reconnect_initial_delay": 0.001,
            "reconnect_max_delay": 0.004,
        }
        options.update(overrides)
        return ChannelManager(**options)

    return factory


@pytest_asyncio.fixture
async def connected_manager(
    make_manager: Callable[..., ChannelManager],
) -> AsyncGenerator[ChannelManager, None]:
    """A manager with an open fake connection.

    Yields:
        Connected ChannelManager.
    """
    manager = make_manager()
    await manager.connect(ENDPOINT, TOKEN)
    assert manager.is_connected
    yield manager
    close_task = manager.disconnect()
    if close_task is not None:
        await close_task
