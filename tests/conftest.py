"""Shared fixtures for the gleaner test suite."""

import asyncio
import socket
import threading
from collections.abc import AsyncGenerator, Generator
from contextlib import closing
from pathlib import Path

import pytest
from aiohttp import web

from gleaner.store.review_store import ReviewStore
from tests.mock_server import create_app

# =============================================================================
# aiohttp test server fixtures
# =============================================================================


def find_free_port() -> int:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


class AioHttpTestServer:
    """Serves an aiohttp app from a daemon thread with its own event loop.

    Usable as a context manager; ``start()`` returns once the socket is
    accepting connections.
    """

    host = "127.0.0.1"

    def __init__(self, app: web.Application, port: int | None = None) -> None:
        self.app = app
        self.port = port or find_free_port()
        self._loop = asyncio.new_event_loop()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def __enter__(self) -> "AioHttpTestServer":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        self._thread.start()
        if not self._ready.wait(timeout=5.0):
            raise RuntimeError(f"Test server did not start on {self.url}")

    def _serve(self) -> None:
        asyncio.set_event_loop(self._loop)
        runner = web.AppRunner(self.app)
        self._loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, self.host, self.port)
        self._loop.run_until_complete(site.start())
        self._ready.set()
        self._loop.run_forever()
        self._loop.run_until_complete(runner.cleanup())
        self._loop.close()

    def stop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5.0)


@pytest.fixture
def review_site_server() -> Generator[AioHttpTestServer, None, None]:
    """The mock review site on a free local port."""
    with AioHttpTestServer(create_app()) as server:
        yield server


@pytest.fixture
def server_url(review_site_server: AioHttpTestServer) -> str:
    """Base URL of the mock review site (e.g. "http://127.0.0.1:8080")."""
    return review_site_server.url


# =============================================================================
# Store fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "reviews.db"


@pytest.fixture
async def review_store(db_path: Path) -> AsyncGenerator[ReviewStore, None]:
    """An empty ReviewStore on a temporary SQLite file."""
    store = await ReviewStore.open(db_path)
    yield store
    await store.close()
