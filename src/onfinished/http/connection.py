"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

One Connection per accepted TCP socket. It is an asyncio.Protocol (the
event loop feeds it bytes) and an EventEmitter (it announces that it
failed or closed).

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

    Client sends:                     data_received() may see:
        GET / HTTP/1.1\\r\\n              "GET / HT"
        Host: x\\r\\n                      "TP/1.1\\r\\nHost: x\\r\\n\\r\\n1\\r\\nA"
        Transfer-Encoding: chunked       "\\r\\n0\\r\\n\\r\\nGET /b HTTP/1.1..."
        ...

Bytes are buffered. The head is parsed once "\\r\\n\\r\\n" is in the
buffer, the body is fed through a decoder as it arrives, and whatever is
left over belongs to the next (pipelined) request.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE ──┐
     │         │            │             │             │        │
     │         │            │             │             └────────┘
     │         ▼            ▼             ▼           (next request)
     └──────────────────► CLOSING ──► CLOSED

=============================================================================
HOW A CONNECTION ENDS
=============================================================================

    Graceful (client FIN, "Connection: close", keep-alive timeout):
        connection_lost(None) ──► destroy()

    Failure (reset, malformed bytes):
        connection_lost(exc) / HTTPParseError ──► destroy(error)

destroy() announces the end in a fixed order, so everything that cares
about the shared socket sees the error before it sees the close:

    1. connection "error" (error)     only when there is an error
    2. request  "aborted" + "close"   if its body was still being read
    3. response "close"               if end() never ran
    4. connection "close" (had_error)

=============================================================================
"""

import asyncio
import logging
import time
import uuid
from enum import Enum, auto
from typing import Any, Callable, Optional, Tuple

from ..config import ServerConfig
from ..core.events import EventEmitter
from .errors import HTTPParseError, TransportError
from .request import IncomingMessage, RequestParser
from .response import ServerResponse


logger = logging.getLogger(__name__)

RequestHandler = Callable[[IncomingMessage, ServerResponse], Any]


class ConnectionState(Enum):
    NEW = auto()           # Just accepted, no data yet
    READING = auto()       # Reading a request head
    PROCESSING = auto()    # Handler is running / body streaming in
    WRITING = auto()       # Response bytes going out
    KEEP_ALIVE = auto()    # Idle between requests
    CLOSING = auto()       # destroy() in progress
    CLOSED = auto()        # Gone for good


class Connection(EventEmitter, asyncio.Protocol):
    """
    A client connection serving HTTP/1.x requests one at a time.

    =========================================================================
    EVENTS
    =========================================================================

        "error"   (exc)        transport failure or malformed request
        "close"   (had_error)  the connection is gone

    =========================================================================
    ATTRIBUTES
    =========================================================================

        id                 Short unique id, used in log lines
        address            Client (ip, port)
        state              ConnectionState
        closed             True once destroyed
        error              The error that destroyed it, if any
        requests_handled   Requests started on this connection
    """

    def __init__(self, handler: RequestHandler, config: Optional[ServerConfig] = None):
        EventEmitter.__init__(self)
        self.config = config or ServerConfig()
        self.handler = handler

        self.id = str(uuid.uuid4())[:8]
        self.address: Tuple[str, int] = ("", 0)
        self.state = ConnectionState.NEW
        self.error: Optional[BaseException] = None
        self.requests_handled = 0
        self.created_at = time.time()
        self.last_activity = self.created_at

        self.transport: Optional[asyncio.Transport] = None
        self._parser = RequestParser(
            max_header_size=self.config.max_header_size,
            max_request_size=self.config.max_request_size,
        )
        self._buffer = b""
        self._request: Optional[IncomingMessage] = None   # body being read
        self._decoder = None
        self._response: Optional[ServerResponse] = None   # response in flight
        self._processing = False
        self._idle_handle: Optional[asyncio.TimerHandle] = None

        self.set_max_listeners(self.config.max_listeners)

    def __repr__(self) -> str:
        return f"<Connection {self.id} {self.client_ip}:{self.client_port} {self.state.name}>"

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    @property
    def writable(self) -> bool:
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return False
        return self.transport is not None and not self.transport.is_closing()

    @property
    def idle_time(self) -> float:
        return time.time() - self.last_activity

    # =========================================================================
    # asyncio.Protocol CALLBACKS
    # =========================================================================

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport
        peer = transport.get_extra_info("peername")
        if isinstance(peer, tuple) and len(peer) >= 2:
            self.address = (peer[0], peer[1])
        logger.debug(f"[{self.id}] Accepted connection from {self.client_ip}:{self.client_port}")
        self._arm_idle_timer()

    def data_received(self, data: bytes) -> None:
        if self.closed:
            return
        self.last_activity = time.time()
        self._cancel_idle_timer()
        self._buffer += data
        self._process()

    def eof_received(self) -> bool:
        logger.debug(f"[{self.id}] Client closed its side")
        # False: let the transport close, connection_lost() follows
        return False

    def connection_lost(self, exc: Optional[Exception]) -> None:
        error = None
        if exc is not None:
            error = TransportError(f"Connection lost: {exc}")
            error.__cause__ = exc
        self.destroy(error)

    # =========================================================================
    # OUTPUT
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Hand bytes to the transport.

        Returns:
            True if queued for sending, False if the connection is gone.
        """
        if not self.writable:
            logger.debug(f"[{self.id}] Send on closed connection dropped ({len(data)} bytes)")
            return False
        self.state = ConnectionState.WRITING
        self.transport.write(data)
        self.last_activity = time.time()
        return True

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def close(self) -> None:
        """
        Close gracefully: buffered output is flushed first, then the
        transport reports connection_lost(None) which destroys us.
        """
        self._cancel_idle_timer()
        if self.transport is not None and not self.transport.is_closing():
            self.transport.close()
        elif self.transport is None:
            self.destroy()

    def destroy(self, error: Optional[BaseException] = None) -> None:
        """
        Tear the connection down now, announcing why.

        Safe to call more than once; only the first call does anything.

        Args:
            error: The failure that ends the connection, or None for a
                   plain close/abort.
        """
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        self.state = ConnectionState.CLOSING
        self.error = error
        self._cancel_idle_timer()

        if self.transport is not None and not self.transport.is_closing():
            self.transport.close()

        # ─────────────────────────────────────────────────────────────────
        # STEP 1: The error, while requests/responses are still open
        # ─────────────────────────────────────────────────────────────────
        if error is not None:
            if self.listener_count("error"):
                self.emit("error", error)
            else:
                logger.warning(f"[{self.id}] Connection error: {error}")

        self.state = ConnectionState.CLOSED
        request, response = self._request, self._response
        self._request = self._decoder = self._response = None
        self._buffer = b""

        # ─────────────────────────────────────────────────────────────────
        # STEP 2: Whatever was in flight was cut off
        # ─────────────────────────────────────────────────────────────────
        if request is not None:
            request._abort()
        if response is not None:
            response._abort()

        # ─────────────────────────────────────────────────────────────────
        # STEP 3: The socket itself
        # ─────────────────────────────────────────────────────────────────
        self.emit("close", error is not None)
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    # =========================================================================
    # REQUEST PROCESSING
    # =========================================================================

    def _process(self) -> None:
        """
        Consume as much of the buffer as the current state allows.

        At most one response is in flight. Bytes of a pipelined request
        stay buffered until that response finishes.
        """
        if self._processing:
            return
        self._processing = True
        try:
            while not self.closed:
                if self._request is not None:
                    if not self._read_body():
                        break
                elif self._response is not None:
                    break
                elif not self._start_request():
                    break
        except HTTPParseError as e:
            self._reject(e)
        finally:
            self._processing = False

        if not self.closed and self._response is None and self._request is None:
            self._arm_idle_timer()

    def _start_request(self) -> bool:
        self._buffer = self._buffer.lstrip(b"\r\n")
        header_end = self._buffer.find(b"\r\n\r\n")
        if header_end == -1:
            if len(self._buffer) > self.config.max_header_size:
                raise HTTPParseError("Request head too large", status_code=431)
            return False

        self.state = ConnectionState.READING
        head, self._buffer = self._buffer[:header_end + 4], self._buffer[header_end + 4:]

        request = self._parser.parse(head, self.address, connection=self)
        decoder = self._parser.body_decoder(request)
        response = ServerResponse(
            connection=self,
            request=request,
            keep_alive=request.is_keep_alive and self.config.keep_alive,
            server_name=self.config.server_name,
        )

        self.requests_handled += 1
        self._request, self._decoder, self._response = request, decoder, response
        self.state = ConnectionState.PROCESSING
        logger.debug(f"[{self.id}] {request.method} {request.path} (request #{self.requests_handled})")

        self._dispatch(request, response)
        return True

    def _read_body(self) -> bool:
        """
        Feed buffered bytes to the current request's body decoder.

        Returns:
            True when the body is complete and processing can go on,
            False when more bytes are needed.
        """
        request = self._request
        if not self._decoder.done:
            if not self._buffer:
                return False
            chunks, self._buffer = self._decoder.feed(self._buffer)
            for chunk in chunks:
                request._push(chunk)
            if self._request is not request or not self._decoder.done:
                return False

        self._request = self._decoder = None
        request._complete()
        return True

    def _dispatch(self, request: IncomingMessage, response: ServerResponse) -> None:
        try:
            self.handler(request, response)
        except Exception as e:
            logger.exception(f"[{self.id}] Handler error on {request.method} {request.path}: {e}")
            if response.headers_sent or not self.writable:
                self.destroy()
                return
            response.status = 500
            response.should_keep_alive = False
            response.set_header("Content-Type", "text/plain; charset=utf-8")
            response.end(b"Internal Server Error")

    def _response_finished(self, response: ServerResponse) -> None:
        """Called by ServerResponse.end() after "finish"."""
        if response is not self._response:
            return
        self._response = None

        if not response.should_keep_alive:
            self.close()
            return

        self.state = ConnectionState.KEEP_ALIVE
        self._process()

    def _reject(self, error: HTTPParseError) -> None:
        """
        Answer a malformed request with its status code when nothing else
        has been written yet, then destroy the connection with the error.
        """
        logger.debug(f"[{self.id}] Bad request: {error}")
        if self._response is None and self.writable:
            response = ServerResponse(
                connection=self,
                keep_alive=False,
                server_name=self.config.server_name,
            )
            response.status = error.status_code
            response.set_header("Content-Type", "text/plain; charset=utf-8")
            response.end(str(error))
        self.destroy(error)

    # =========================================================================
    # KEEP-ALIVE TIMEOUT
    # =========================================================================

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._idle_handle = loop.call_later(self.config.keep_alive_timeout, self._on_idle_timeout)

    def _cancel_idle_timer(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle_timeout(self) -> None:
        self._idle_handle = None
        if self._response is None and self._request is None:
            logger.debug(f"[{self.id}] Keep-alive timeout after {self.idle_time:.1f}s")
            self.close()
