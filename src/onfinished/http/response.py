"""
=============================================================================
HTTP SERVER RESPONSE
=============================================================================

A streaming HTTP/1.x response, written piece by piece to its connection.

=============================================================================
LIFECYCLE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   set_header() / status        nothing on the wire yet               │
    │        │                                                             │
    │        ▼                                                             │
    │   write_head() or first        status line + headers sent            │
    │   write() / end()              headers_sent = True                   │
    │        │                                                             │
    │        ▼                                                             │
    │   write(chunk) ...             body pieces                           │
    │        │                                                             │
    │        ▼                                                             │
    │   end([chunk])                 last piece, finished = True,          │
    │                                "finish" emitted                      │
    │                                                                      │
    │   connection lost before end() ──► "close" emitted instead          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
BODY FRAMING
=============================================================================

The client must be able to tell where the body ends:

    end(body) with nothing written before   → Content-Length: len(body)
    Content-Length set by the handler       → used as is
    write() before end(), HTTP/1.1          → Transfer-Encoding: chunked
    write() before end(), HTTP/1.0          → body ends when we close

=============================================================================
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

from ..core.events import EventEmitter
from .errors import TransportError
from .status_codes import HTTPStatus, reason_phrase


logger = logging.getLogger(__name__)

Body = Union[str, bytes]


class ServerResponse(EventEmitter):
    """
    An outbound HTTP response.

    =========================================================================
    EVENTS
    =========================================================================

        "finish"          end() handed the last byte to the connection
        "close"           the connection went away before end()
        "error"   (exc)   writing failed (e.g. write after end)

    =========================================================================
    COMPLETION FLAGS
    =========================================================================

        headers_sent   True once the status line and headers are written
        finished       True once end() has run

    Example:
        def handler(request, response):
            response.set_header("Content-Type", "text/plain")
            response.end("hello, world!")
    """

    def __init__(
        self,
        connection: Any = None,
        request: Any = None,
        keep_alive: bool = True,
        server_name: str = "onfinished/1.0",
    ):
        super().__init__()
        self.connection = connection
        self.request = request
        self.version = getattr(request, "version", "HTTP/1.1")
        self.status: int = HTTPStatus.OK
        self.should_keep_alive = keep_alive
        self.server_name = server_name

        self.headers_sent = False
        self.finished = False
        self.bytes_written = 0

        # lowercase name → (original name, value)
        self._headers: Dict[str, Tuple[str, str]] = {}
        self._chunked = False

    def __repr__(self) -> str:
        return f"<ServerResponse {self.status} finished={self.finished}>"

    # =========================================================================
    # HEADERS
    # =========================================================================

    def set_header(self, name: str, value: Any) -> "ServerResponse":
        if self.headers_sent:
            raise RuntimeError("Cannot set headers after they are sent")
        self._headers[name.lower()] = (name, str(value))
        return self

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else default

    def has_header(self, name: str) -> bool:
        return name.lower() in self._headers

    def remove_header(self, name: str) -> "ServerResponse":
        if self.headers_sent:
            raise RuntimeError("Cannot remove headers after they are sent")
        self._headers.pop(name.lower(), None)
        return self

    @property
    def headers(self) -> Dict[str, str]:
        return {name: value for name, value in self._headers.values()}

    def write_head(self, status: int, headers: Optional[Dict[str, Any]] = None) -> "ServerResponse":
        """
        Set the status and extra headers, then send the head right away.

        Raises:
            RuntimeError: If the head was already sent.
        """
        if self.headers_sent:
            raise RuntimeError("Headers already sent")
        self.status = status
        for name, value in (headers or {}).items():
            self.set_header(name, value)
        self._send_head(body_length=None)
        return self

    # =========================================================================
    # BODY
    # =========================================================================

    def write(self, data: Body) -> bool:
        """
        Write one piece of the body.

        Returns:
            True if the bytes were handed to the connection, False if the
            connection is already gone or the response has ended.
        """
        if self.finished:
            self.emit("error", TransportError("write after end"))
            return False
        if not self._writable():
            logger.debug(f"Dropping write on closed connection ({self!r})")
            return False

        chunk = _to_bytes(data)
        if not self.headers_sent:
            self._send_head(body_length=None)
        if chunk:
            self._send_body(chunk)
        return True

    def end(self, data: Body = b"") -> "ServerResponse":
        """
        Finish the response, optionally with a last piece of body.

        Emits "finish" and then lets the connection move on to the next
        request (or close). Calling end() twice is a no-op. On a
        connection that is already gone nothing is written and the
        response never finishes; it was closed instead.
        """
        if self.finished:
            return self
        if not self._writable():
            logger.debug(f"Ignoring end() on closed connection ({self!r})")
            return self

        chunk = _to_bytes(data)
        if not self.headers_sent:
            self._send_head(body_length=len(chunk))
        if chunk:
            self._send_body(chunk)
        if self._chunked:
            self._send(b"0\r\n\r\n")

        self.finished = True
        self.emit("finish")

        if self.connection is not None:
            self.connection._response_finished(self)
        return self

    # =========================================================================
    # DRIVEN BY THE CONNECTION
    # =========================================================================

    def _abort(self) -> None:
        """The connection closed before end() ran."""
        if self.finished:
            return
        self.emit("close")

    # =========================================================================
    # WIRE FORMAT
    # =========================================================================

    @property
    def _body_allowed(self) -> bool:
        if getattr(self.request, "method", None) == "HEAD":
            return False
        try:
            return HTTPStatus(self.status).has_body
        except ValueError:
            return True

    def _writable(self) -> bool:
        if self.connection is None:
            return True
        return self.connection.writable

    def _send_head(self, body_length: Optional[int]) -> None:
        headers = dict(self._headers)

        def put(name: str, value: str) -> None:
            headers.setdefault(name.lower(), (name, value))

        # ─────────────────────────────────────────────────────────────────
        # STEP 1: Decide how the body is delimited
        # ─────────────────────────────────────────────────────────────────
        if not self._body_allowed:
            pass
        elif "content-length" in headers or "transfer-encoding" in headers:
            self._chunked = headers.get("transfer-encoding", ("", ""))[1].lower() == "chunked"
        elif body_length is not None:
            put("Content-Length", str(body_length))
        elif self.version == "HTTP/1.1":
            put("Transfer-Encoding", "chunked")
            self._chunked = True
        else:
            # HTTP/1.0 has no chunking: the body ends when the socket closes
            self.should_keep_alive = False

        # ─────────────────────────────────────────────────────────────────
        # STEP 2: Standard headers
        # ─────────────────────────────────────────────────────────────────
        if headers.get("connection", ("", ""))[1].lower() == "close":
            self.should_keep_alive = False
        put("Date", format_http_date(datetime.now(timezone.utc)))
        put("Server", self.server_name)
        headers["connection"] = ("Connection", "keep-alive" if self.should_keep_alive else "close")

        # ─────────────────────────────────────────────────────────────────
        # STEP 3: Status line + headers + blank line
        # ─────────────────────────────────────────────────────────────────
        lines = [f"{self.version} {int(self.status)} {reason_phrase(self.status)}"]
        lines.extend(f"{name}: {value}" for name, value in headers.values())
        head = "\r\n".join(lines) + "\r\n\r\n"

        self.headers_sent = True
        self._send(head.encode("latin-1"))

    def _send_body(self, chunk: bytes) -> None:
        if not self._body_allowed:
            return
        self.bytes_written += len(chunk)
        if self._chunked:
            self._send(f"{len(chunk):x}\r\n".encode("ascii") + chunk + b"\r\n")
        else:
            self._send(chunk)

    def _send(self, data: bytes) -> None:
        if self.connection is not None:
            self.connection.send(data)


def _to_bytes(data: Body) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Format: Day, DD Mon YYYY HH:MM:SS GMT
    Example: Wed, 01 Jan 2026 12:00:00 GMT

    Day and month names are always English, whatever the process locale.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )
