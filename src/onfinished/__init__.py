"""
=============================================================================
onfinished: exactly-once completion callbacks for HTTP messages
=============================================================================

    from onfinished import on_finished, is_finished

    def handler(request, response):
        on_finished(response, lambda error: log_done(request, error))
        response.end(b"ok")

A request is finished when its body has been fully read or its connection
went away. A response is finished when end() has run or its connection
went away. Either way every listener is called exactly once, with the
terminal error or None, no matter how many close/error/finish signals
race each other, and no matter whether it was registered before or after
the fact.

=============================================================================
PACKAGE LAYOUT
=============================================================================

    core/         completion tracking (works with any message-shaped emitter)
    http/         asyncio HTTP/1.x server producing the messages
    middleware/   AccessLogger, built on on_finished()
    config.py     ServerConfig
    __main__.py   python -m onfinished (demo server)

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .core import EventEmitter, UnsupportedMessageKind, is_finished, on_finished
from .http import HTTPServer, TransportError, create_server

__all__ = [
    "on_finished",
    "is_finished",
    "UnsupportedMessageKind",
    "TransportError",
    "EventEmitter",
    "HTTPServer",
    "create_server",
    "ServerConfig",
    "__version__",
]
