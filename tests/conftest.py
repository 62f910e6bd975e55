"""
pytest configuration and fixtures.
"""

import asyncio
from typing import Any, List, Optional

import pytest
import pytest_asyncio

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from onfinished import ServerConfig, create_server
from onfinished.core import EventEmitter


# =============================================================================
# FAKE MESSAGES
# =============================================================================
#
# Plain emitters shaped like the real messages, so the completion core can
# be driven one signal at a time.


class FakeConnection(EventEmitter):
    def __init__(self, conn_id: str = "c0ffee00"):
        super().__init__()
        self.id = conn_id
        self.closed = False
        self.error: Optional[BaseException] = None


class FakeResponse(EventEmitter):
    def __init__(self, connection: Any = None):
        super().__init__()
        self.connection = connection
        self.finished = False
        self.headers_sent = False

    def finish(self):
        self.finished = True
        self.emit("finish")


class FakeRequest(EventEmitter):
    def __init__(self, connection: Any = None):
        super().__init__()
        self.connection = connection
        self.complete = False
        self.aborted = False

    def end(self):
        self.complete = True
        self.emit("end")


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_response(connection: FakeConnection) -> FakeResponse:
    return FakeResponse(connection)


@pytest.fixture
def fake_request(connection: FakeConnection) -> FakeRequest:
    return FakeRequest(connection)


class Recorder:
    """Listener that records every call it receives."""

    def __init__(self):
        self.calls: List[Optional[BaseException]] = []

    def __call__(self, error: Optional[BaseException]) -> None:
        self.calls.append(error)

    @property
    def count(self) -> int:
        return len(self.calls)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


# =============================================================================
# SAMPLE REQUESTS
# =============================================================================


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        + b"\r\n"
        + body
    )


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        log_level="WARNING",
    )


# =============================================================================
# LIVE SERVER
# =============================================================================


@pytest_asyncio.fixture
async def serve(config: ServerConfig):
    """
    Start real servers on free ports; all are closed after the test.

        server = await serve(handler)
        reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
    """
    servers = []

    async def start(handler, **overrides):
        cfg = ServerConfig(**{**config.__dict__, **overrides})
        server = await create_server(handler, cfg).listen()
        servers.append(server)
        return server

    yield start

    for server in servers:
        await server.close()


def write_request(writer: asyncio.StreamWriter, chunked: bool = False, path: str = "/") -> None:
    """Write a keep-alive GET head, optionally announcing a chunked body."""
    writer.write(f"GET {path} HTTP/1.1\r\n".encode())
    writer.write(b"Host: localhost\r\n")
    writer.write(b"Connection: keep-alive\r\n")
    if chunked:
        writer.write(b"Transfer-Encoding: chunked\r\n")
    writer.write(b"\r\n")
