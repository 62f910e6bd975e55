"""
=============================================================================
ACCESS LOGGING
=============================================================================

Logs one line per request, written when the response is DONE, not when the
handler returns.

=============================================================================
WHY WAIT FOR COMPLETION?
=============================================================================

A streaming handler returns long before its response is finished:

    def handler(request, response):
        response.write_head(200)
        loop.call_later(2.0, response.end, b"late")   # finishes later
        # ◄── handler returns here, after ~0 ms

Logging at return time would report 0 ms and miss clients that hang up
half way. Hooking on_finished(response) logs exactly once, with the real
duration, and with the outcome:

    ┌─────────────────────────┬──────────────────────────────────────────┐
    │ Outcome                 │ Log line                                 │
    ├─────────────────────────┼──────────────────────────────────────────┤
    │ end() ran               │ status, bytes, duration                  │
    │ client went away        │ ... aborted                              │
    │ transport failed        │ ... error=TransportError: ...            │
    └─────────────────────────┴──────────────────────────────────────────┘

=============================================================================
REQUEST IDS
=============================================================================

Every response gets an X-Request-ID header (unless the handler set one),
and the same id is in the log line, so a client report can be matched to
the server's log.

=============================================================================
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from ..core.finished import on_finished
from ..http.connection import RequestHandler
from ..http.request import IncomingMessage
from ..http.response import ServerResponse


# Namespaced so it can be routed separately:
#   logging.getLogger("onfinished.access").addHandler(file_handler)
logger = logging.getLogger("onfinished.access")


@dataclass
class RequestLog:
    """
    Structured log entry for one finished request.

    Fields:
        request_id:     Value of the X-Request-ID response header
        method:         HTTP method (GET, POST, etc.)
        path:           Request path (e.g., /api/users)
        query:          Query string parameters
        client_ip:      Client's IP address
        user_agent:     Browser/client identifier
        status_code:    HTTP response code
        content_length: Response body bytes actually written
        duration_ms:    From handler call to completion
        timestamp:      When the request finished
        aborted:        The connection went away before end()
        error:          "Type: message" of the terminal error, if any
    """

    request_id: str
    method: str
    path: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str
    aborted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for JSON serialization."""
        return {
            "request_id": self.request_id,
            "method": self.method,
            "path": self.path,
            "query": self.query,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "status_code": self.status_code,
            "content_length": self.content_length,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
            "aborted": self.aborted,
            "error": self.error,
        }

    def to_text(self) -> str:
        """Apache-style access log line, with the outcome appended."""
        line = (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )
        if self.error:
            line += f" error={self.error}"
        elif self.aborted:
            line += " aborted"
        return line


class AccessLogger:
    """
    Wraps a request handler and logs every request once it has finished.

    Usage:
        handler = AccessLogger(app, log_format="json", skip_paths=["/health"])
        create_server(handler).run()
    """

    def __init__(
        self,
        handler: RequestHandler,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            handler: The wrapped handler(request, response).
            log_format: "text" (Apache style) or "json".
            include_request_id: Add an X-Request-ID header to responses.
            log_level: Level access lines are logged at.
            skip_paths: Paths that are never logged (e.g. health checks).
        """
        if log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {log_format}")
        self.handler = handler
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or [])

    def __call__(self, request: IncomingMessage, response: ServerResponse) -> Any:
        request_id = request.get_header("x-request-id") or str(uuid.uuid4())[:8]
        if self.include_request_id and not response.has_header("X-Request-ID"):
            response.set_header("X-Request-ID", request_id)

        if request.path not in self.skip_paths:
            start_time = time.time()
            on_finished(
                response,
                lambda error: self._log(request, response, request_id, start_time, error),
            )

        return self.handler(request, response)

    def _log(
        self,
        request: IncomingMessage,
        response: ServerResponse,
        request_id: str,
        start_time: float,
        error: Optional[BaseException],
    ) -> None:
        entry = RequestLog(
            request_id=request_id,
            method=request.method,
            path=request.path,
            query=str(request.query_params) if request.query_params else "",
            client_ip=request.client_address[0],
            user_agent=request.user_agent or "-",
            status_code=int(response.status),
            content_length=response.bytes_written,
            duration_ms=(time.time() - start_time) * 1000,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
            aborted=not response.finished,
            error=f"{type(error).__name__}: {error}" if error is not None else None,
        )

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())
