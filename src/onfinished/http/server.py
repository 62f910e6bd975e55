"""
=============================================================================
HTTP SERVER
=============================================================================

An asyncio HTTP/1.x server that hands each request to a plain handler:

    def handler(request: IncomingMessage, response: ServerResponse):
        on_finished(response, lambda error: ...)
        response.end(b"hello")

    server = create_server(handler, ServerConfig(port=3000))
    server.run()

=============================================================================
COMPONENTS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   HTTPServer                                                         │
    │     │  loop.create_server()                                          │
    │     ▼                                                                │
    │   Connection (one per socket, asyncio.Protocol)                      │
    │     │  RequestParser, body decoders                                  │
    │     ▼                                                                │
    │   IncomingMessage  +  ServerResponse  ──►  handler(request, response)│
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The handler is called synchronously from the event loop. It may finish the
response right away or later (from a task, a timer, a "data" listener).

=============================================================================
"""

import asyncio
import logging
import signal
from typing import Optional, Set, Tuple

from ..config import ServerConfig
from .connection import Connection, RequestHandler
from .errors import HTTPParseError


logger = logging.getLogger(__name__)


class HTTPServer:
    """
    Listens on a TCP port and serves requests with one handler.

    Example:
        async def main():
            server = await create_server(handler).listen(port=0)
            print(server.port)
            ...
            await server.close()
    """

    def __init__(self, handler: RequestHandler, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()
        self.handler = handler

        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[Connection] = set()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def listening(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port). Only valid after listen()."""
        if self._server is None or not self._server.sockets:
            raise RuntimeError("Server is not listening")
        sockname = self._server.sockets[0].getsockname()
        return sockname[0], sockname[1]

    @property
    def port(self) -> int:
        return self.address[1]

    @property
    def connections(self) -> Set[Connection]:
        return set(self._connections)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def listen(self, host: Optional[str] = None, port: Optional[int] = None) -> "HTTPServer":
        """
        Bind and start accepting connections.

        Args:
            host: Override config host.
            port: Override config port (0 picks a free port).
        """
        if self._server is not None:
            raise RuntimeError("Server is already listening")

        host = host or self.config.host
        port = self.config.port if port is None else port

        loop = asyncio.get_running_loop()
        try:
            self._server = await loop.create_server(
                self._create_connection,
                host,
                port,
                backlog=self.config.backlog,
                reuse_address=True,
            )
        except OSError as e:
            logger.error(f"Failed to bind to {host}:{port}: {e}")
            raise

        bound_host, bound_port = self.address
        logger.info(f"Server listening on {bound_host}:{bound_port}")
        return self

    async def close(self) -> None:
        """
        Stop accepting, destroy open connections and wait until the
        listening socket is released.
        """
        if self._server is None:
            return
        logger.info("Shutting down server...")

        server, self._server = self._server, None
        server.close()
        for conn in list(self._connections):
            conn.destroy()
        await server.wait_closed()

        logger.info("Server stopped")

    async def serve_forever(self) -> None:
        """Listen (if needed) and serve until SIGINT/SIGTERM, then close."""
        if self._server is None:
            await self.listen()

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers; Ctrl+C
                # still raises KeyboardInterrupt in run()
                logger.debug(f"Signal handler for {sig.name} not supported")

        try:
            await stop.wait()
            logger.info("Received shutdown signal")
        finally:
            await self.close()

    def run(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """
        Start the server (blocking).

        Configures logging, then runs the event loop until the process is
        asked to stop.
        """
        if host:
            self.config.host = host
        if port is not None:
            self.config.port = port

        self._setup_logging()
        logger.info(f"Starting HTTP server on {self.config.host}:{self.config.port}")

        try:
            asyncio.run(self.serve_forever())
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")

    def _setup_logging(self) -> None:
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("onfinished").setLevel(level)

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _create_connection(self) -> Connection:
        conn = Connection(self.handler, self.config)
        conn.on("error", lambda error: self._on_client_error(conn, error))
        conn.once("close", lambda had_error: self._connections.discard(conn))
        self._connections.add(conn)
        return conn

    def _on_client_error(self, conn: Connection, error: BaseException) -> None:
        # Observe only: the connection is already tearing itself down
        if isinstance(error, HTTPParseError):
            logger.info(f"[{conn.id}] Rejected request from {conn.client_ip}: {error}")
        else:
            logger.debug(f"[{conn.id}] Client error: {error}")


def create_server(handler: RequestHandler, config: Optional[ServerConfig] = None) -> HTTPServer:
    """
    Create an HTTP server for a request handler.

    Args:
        handler: Called as handler(request, response) for every request.
        config: Server configuration.

    Returns:
        An HTTPServer that is not listening yet.
    """
    return HTTPServer(handler, config)
