import os

os.environ.setdefault("DISABLE_TELEMETRY", "true")

import pytest
import pytest_asyncio
from aiohttp import ClientConnectionError

from models import DatabaseQueue


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self.body = body

    async def read(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession: maps URLs to (status, body) or an exception.

    Unknown URLs raise ClientConnectionError, like an unreachable host.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requested = []

    def get(self, url, **kwargs):
        self.requested.append(url)
        route = self.routes.get(url)
        if route is None:
            raise ClientConnectionError(f"Cannot connect to {url}")
        if isinstance(route, BaseException):
            raise route
        status, body = route if isinstance(route, tuple) else (200, route)
        if isinstance(body, str):
            body = body.encode("utf-8")
        return FakeResponse(status, body)


@pytest.fixture
def make_session():
    return FakeSession


@pytest_asyncio.fixture
async def db(tmp_path):
    queue = DatabaseQueue(str(tmp_path / "test.db"))
    await queue.start()
    yield queue
    await queue.stop()
