"""
=============================================================================
HTTP LAYER
=============================================================================

The request/response messages on_finished() tracks, and the asyncio server
that produces them.

    ┌─────────────────────────────────────────────────────────────────────┐
    │ request.py      IncomingMessage, RequestParser, body decoders       │
    │ response.py     ServerResponse (streaming, chunked or sized)        │
    │ connection.py   Connection: asyncio.Protocol + EventEmitter         │
    │ server.py       HTTPServer, create_server()                         │
    │ errors.py       TransportError, HTTPParseError                      │
    │ status_codes.py HTTPStatus                                          │
    └─────────────────────────────────────────────────────────────────────┘

Every message exposes the shape the completion tracker looks for:

    IncomingMessage   .complete  .aborted   .connection   "end"/"error"/"close"
    ServerResponse    .finished  .headers_sent .connection "finish"/"error"/"close"
    Connection        .closed    .error                    "error"/"close"

=============================================================================
"""

from .connection import Connection, ConnectionState
from .errors import HTTPParseError, TransportError
from .request import IncomingMessage, RequestParser, parse_request
from .response import ServerResponse
from .server import HTTPServer, create_server
from .status_codes import HTTPStatus

__all__ = [
    "Connection",
    "ConnectionState",
    "HTTPParseError",
    "TransportError",
    "IncomingMessage",
    "RequestParser",
    "parse_request",
    "ServerResponse",
    "HTTPServer",
    "create_server",
    "HTTPStatus",
]
