"""Pytest fixtures: an isolated app per test, an httpx client over ASGI,
and a small driver for the never-ending SSE endpoint (httpx's ASGI transport
buffers the whole body, so it cannot read a stream that never ends).
"""

import asyncio
import json
from typing import Callable, List

import pytest
from httpx import ASGITransport, AsyncClient

from main import create_app
from utilities import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(keepalive_interval_seconds=30, ttl_cleanup_interval_seconds=60)


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
async def client(app) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.01)


class SSEProbe:
    """Opens GET <path> against the ASGI app and reads the response message by message."""

    def __init__(self, app, path: str):
        self.app = app
        self.path = path
        self.status = None
        self.headers = {}
        self._messages: asyncio.Queue = asyncio.Queue()
        self._disconnected = asyncio.Event()
        self._task = None

    async def _receive(self) -> dict:
        await self._disconnected.wait()
        return {"type": "http.disconnect"}

    async def _send(self, message: dict) -> None:
        await self._messages.put(message)

    async def open(self) -> int:
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": self.path,
            "raw_path": self.path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"test")],
            "client": ("127.0.0.1", 50000),
            "server": ("test", 80),
        }
        self._task = asyncio.create_task(self.app(scope, self._receive, self._send))
        start = await asyncio.wait_for(self._messages.get(), 2)
        self.status = start["status"]
        self.headers = {k.decode().lower(): v.decode() for k, v in start["headers"]}
        return self.status

    async def read_body(self, timeout: float = 2.0) -> str:
        """Return the next non-empty body chunk."""
        while True:
            message = await asyncio.wait_for(self._messages.get(), timeout)
            body = message.get("body", b"")
            if body:
                return body.decode()

    async def read_event(self, timeout: float = 2.0) -> dict:
        """Return the JSON payload of the next data frame, skipping comment frames."""
        while True:
            chunk = await self.read_body(timeout)
            if chunk.startswith("data: "):
                return json.loads(chunk[len("data: "):])

    async def close(self) -> None:
        self._disconnected.set()
        if self._task is not None:
            await asyncio.wait_for(self._task, 2)


@pytest.fixture
async def open_stream(app):
    """Factory: open_stream(student_id) -> SSEProbe; all probes are disconnected at teardown."""
    probes: List[SSEProbe] = []

    async def _open(student_id: str) -> SSEProbe:
        probe = SSEProbe(app, f"/notifications/stream/{student_id}")
        await probe.open()
        probes.append(probe)
        return probe

    yield _open
    for probe in probes:
        await probe.close()


@pytest.fixture
def wait_until():
    return _wait_until
