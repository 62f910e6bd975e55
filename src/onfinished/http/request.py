"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

This module turns raw bytes from the socket into IncomingMessage objects
and decodes request bodies as they stream in.

=============================================================================
HTTP REQUEST STRUCTURE (RFC 7230)
=============================================================================

    POST /api/users HTTP/1.1\r\n            ← Request line
    Host: localhost:8080\r\n                ← Headers
    Transfer-Encoding: chunked\r\n
    \r\n                                    ← Empty line (end of head)
    1\r\n                                   ← Body (chunked framing)
    A\r\n
    0\r\n
    \r\n

The HEAD (request line + headers) is parsed in one go once the blank line
has arrived. The BODY is different: it may be large, it may trickle in, and
with keep-alive the next request's bytes may follow right behind it. So the
body is DECODED INCREMENTALLY, and each decoded piece is emitted as a
"data" event on the request.

=============================================================================
BODY FRAMING
=============================================================================

    ┌──────────────────────────┬──────────────────────────────────────────┐
    │ Headers                  │ How the body ends                        │
    ├──────────────────────────┼──────────────────────────────────────────┤
    │ Transfer-Encoding:       │ A zero-size chunk, then optional trailer │
    │   chunked                │ lines, then an empty line                │
    │ Content-Length: N        │ After exactly N bytes                    │
    │ (neither)                │ No body at all                           │
    │ both                     │ REJECTED (request smuggling risk)        │
    └──────────────────────────┴──────────────────────────────────────────┘

Chunk sizes are hexadecimal. A byte that cannot start a chunk size is a
protocol violation and is rejected as soon as it arrives; we do not wait
for the line ending that may never come.

=============================================================================
"""

import codecs
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlparse

from ..core.events import EventEmitter
from .errors import HTTPParseError


class IncomingMessage(EventEmitter):
    """
    An inbound HTTP request whose body is streamed as events.

    =========================================================================
    EVENTS
    =========================================================================

        "data"     (chunk)  A decoded piece of the body (bytes, or str after
                            set_encoding())
        "end"               The whole body has been received
        "aborted"           The connection went away before "end"
        "close"             Emitted right after "aborted"
        "error"    (exc)    Emitted by code that fails while reading it

    =========================================================================
    COMPLETION FLAGS
    =========================================================================

        complete   True once "end" has been emitted
        aborted    True once the request was cut off

    Headers are stored with LOWERCASE names (they are case-insensitive).
    """

    def __init__(
        self,
        method: str,
        path: str,
        version: str = "HTTP/1.1",
        headers: Optional[Dict[str, str]] = None,
        query_params: Optional[Dict[str, List[str]]] = None,
        client_address: Tuple[str, int] = ("", 0),
        connection: Any = None,
        raw: bytes = b"",
    ):
        super().__init__()
        self.method = method
        self.path = path
        self.version = version
        self.headers: Dict[str, str] = headers or {}
        self.query_params: Dict[str, List[str]] = query_params or {}
        self.client_address = client_address
        self.connection = connection
        self.raw = raw

        self.complete = False
        self.aborted = False
        self.bytes_received = 0
        self._decoder = None

    def __repr__(self) -> str:
        return f"<IncomingMessage {self.method} {self.path} {self.version}>"

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters ("application/json")."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        """Content-Length as an integer, 0 when absent."""
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def is_chunked(self) -> bool:
        encodings = self.headers.get("transfer-encoding", "")
        return encodings.split(",")[-1].strip().lower() == "chunked"

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        Should the connection stay open after this request?

            HTTP/1.1: keep alive unless "Connection: close"
            HTTP/1.0: close unless "Connection: keep-alive"
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default

    def set_encoding(self, encoding: str) -> "IncomingMessage":
        """
        Deliver "data" as decoded text instead of bytes.

        Uses an incremental decoder, so a multi-byte character split across
        two TCP segments is still decoded correctly.
        """
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        return self

    # =========================================================================
    # DRIVEN BY THE CONNECTION
    # =========================================================================

    def _push(self, chunk: bytes) -> None:
        self.bytes_received += len(chunk)
        if self._decoder is not None:
            text = self._decoder.decode(chunk)
            if text:
                self.emit("data", text)
        else:
            self.emit("data", chunk)

    def _complete(self) -> None:
        if self.complete or self.aborted:
            return
        self.complete = True
        if self._decoder is not None:
            tail = self._decoder.decode(b"", final=True)
            if tail:
                self.emit("data", tail)
        self.emit("end")

    def _abort(self) -> None:
        if self.complete or self.aborted:
            return
        self.aborted = True
        self.emit("aborted")
        self.emit("close")


# =============================================================================
# BODY DECODERS
# =============================================================================
#
# Both decoders share one interface:
#
#     chunks, rest = decoder.feed(buffer)
#
#     chunks  - body bytes decoded from the front of `buffer`
#     rest    - bytes NOT consumed: either an incomplete framing line that
#               needs more data, or (once decoder.done) the start of the
#               next pipelined request
#
# =============================================================================


class FixedLengthBodyDecoder:
    """Body delimited by Content-Length."""

    def __init__(self, length: int):
        self.remaining = length

    @property
    def done(self) -> bool:
        return self.remaining == 0

    def feed(self, data: bytes) -> Tuple[List[bytes], bytes]:
        take = data[:self.remaining]
        self.remaining -= len(take)
        return ([take] if take else []), data[len(take):]


class ChunkedBodyDecoder:
    """
    Body using Transfer-Encoding: chunked.

    =========================================================================
    DECODER STATES
    =========================================================================

        SIZE ──(size > 0)──► DATA ──► DATA_END ──► SIZE ...
          │
          └──(size == 0)──► TRAILER ──(empty line)──► DONE

    =========================================================================
    """

    SIZE, DATA, DATA_END, TRAILER, DONE = range(5)

    CHUNK_SIZE_PATTERN = re.compile(rb"^([0-9A-Fa-f]+)[ \t]*(;.*)?$")
    HEX_DIGIT = re.compile(rb"[0-9A-Fa-f]")
    MAX_LINE = 4096

    def __init__(self, max_body_size: int = 10 * 1024 * 1024):
        self.max_body_size = max_body_size
        self.state = self.SIZE
        self.remaining = 0
        self.total = 0

    @property
    def done(self) -> bool:
        return self.state == self.DONE

    def feed(self, data: bytes) -> Tuple[List[bytes], bytes]:
        chunks: List[bytes] = []
        buf = data

        while self.state != self.DONE:
            if self.state == self.SIZE:
                line, buf, complete = self._take_line(buf)
                if not complete:
                    # Fail fast on a chunk size that can never be valid
                    if buf and not self.HEX_DIGIT.match(buf[:1]):
                        raise HTTPParseError(f"Invalid chunk size: {buf[:16]!r}")
                    break

                match = self.CHUNK_SIZE_PATTERN.match(line)
                if not match:
                    raise HTTPParseError(f"Invalid chunk size line: {line[:32]!r}")

                self.remaining = int(match.group(1), 16)
                self.total += self.remaining
                if self.total > self.max_body_size:
                    raise HTTPParseError(
                        f"Request body too large: more than {self.max_body_size} bytes",
                        status_code=413,
                    )
                self.state = self.DATA if self.remaining else self.TRAILER

            elif self.state == self.DATA:
                if not buf:
                    break
                take = buf[:self.remaining]
                chunks.append(take)
                self.remaining -= len(take)
                buf = buf[len(take):]
                if self.remaining == 0:
                    self.state = self.DATA_END

            elif self.state == self.DATA_END:
                if len(buf) < 2:
                    if buf and buf != b"\r":
                        raise HTTPParseError("Missing CRLF after chunk data")
                    break
                if buf[:2] != b"\r\n":
                    raise HTTPParseError("Missing CRLF after chunk data")
                buf = buf[2:]
                self.state = self.SIZE

            elif self.state == self.TRAILER:
                line, buf, complete = self._take_line(buf)
                if not complete:
                    break
                if not line:
                    self.state = self.DONE

        return chunks, buf

    def _take_line(self, buf: bytes) -> Tuple[bytes, bytes, bool]:
        index = buf.find(b"\r\n")
        if index == -1:
            if len(buf) > self.MAX_LINE:
                raise HTTPParseError("Chunk framing line too long")
            return b"", buf, False
        return buf[:index], buf[index + 2:], True


class RequestParser:
    """
    Parses a raw request HEAD into an IncomingMessage.

    ==========================================================================
    PARSER STEPS
    ==========================================================================

        1. Size check          Head too large?  → HTTPParseError(431)
        2. Find \\r\\n\\r\\n        Not found?       → HTTPParseError(400)
        3. Request line        METHOD SP URI SP VERSION
                               Bad syntax (400), method (405), version (505)
        4. Headers             "Name: Value", names lowercased
        5. Body framing        Content-Length must be a number,
                               not combined with Transfer-Encoding

    ==========================================================================
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(
        self,
        max_header_size: int = 64 * 1024,
        max_request_size: int = 10 * 1024 * 1024,
    ):
        self.max_header_size = max_header_size
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: Tuple[str, int] = ("", 0),
        connection: Any = None,
    ) -> IncomingMessage:
        """
        Parse a request head.

        Args:
            data: Bytes starting with the request line and containing the
                  blank line that ends the head. Anything after it is ignored.
            client_address: Client's (ip, port) tuple.
            connection: The Connection the request arrived on.

        Returns:
            An IncomingMessage with no body received yet.

        Raises:
            HTTPParseError: If the head is malformed.
        """
        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            if len(data) > self.max_header_size:
                raise HTTPParseError("Request head too large", status_code=431)
            raise HTTPParseError("Incomplete request: no header terminator")
        if header_end > self.max_header_size:
            raise HTTPParseError("Request head too large", status_code=431)

        header_section = data[:header_end].decode("latin-1")
        lines = header_section.split("\r\n")

        method, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])
        self._check_framing(headers)

        return IncomingMessage(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            client_address=client_address,
            connection=connection,
            raw=data[:header_end + 4],
        )

    def body_decoder(self, request: IncomingMessage):
        """
        Pick the body decoder for a parsed request.

        Raises:
            HTTPParseError: For an unsupported transfer coding (501) or a
                            Content-Length above max_request_size (413).
        """
        if "transfer-encoding" in request.headers:
            if not request.is_chunked:
                raise HTTPParseError(
                    f"Unsupported Transfer-Encoding: {request.headers['transfer-encoding']}",
                    status_code=501,
                )
            return ChunkedBodyDecoder(self.max_request_size)

        if request.content_length > self.max_request_size:
            raise HTTPParseError(
                f"Request body too large: {request.content_length} bytes",
                status_code=413,
            )
        return FixedLengthBodyDecoder(request.content_length)

    def _parse_request_line(self, line: str) -> Tuple[str, str, Dict[str, List[str]], str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line[:64]}")

        method, uri, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        parsed = urlparse(uri)
        path = unquote(parsed.path) or "/"
        query_params = parse_qs(parsed.query, keep_blank_values=True)

        return method, path, query_params, version

    def _parse_headers(self, lines: List[str]) -> Dict[str, str]:
        """
        Parse header lines into a dict with lowercase names.

        Obsolete line folding (a line starting with whitespace) continues
        the previous header. Repeated headers are joined with ", ".
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line[:64]}")

            name = match.group(1).strip().lower()
            value = match.group(2).strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers

    def _check_framing(self, headers: Dict[str, str]) -> None:
        if "content-length" not in headers:
            return
        if "transfer-encoding" in headers:
            raise HTTPParseError("Both Content-Length and Transfer-Encoding present")
        if not headers["content-length"].isdigit():
            raise HTTPParseError(f"Invalid Content-Length: {headers['content-length']}")


def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_header_size: int = 64 * 1024,
) -> IncomingMessage:
    """Parse a request head with a throwaway RequestParser."""
    parser = RequestParser(max_header_size=max_header_size)
    return parser.parse(data, client_address)
