"""
=============================================================================
CLI ENTRY POINT
=============================================================================

Runs a small demo server whose access log is driven by on_finished().

    python -m onfinished
    python -m onfinished --port 3000 --log-format json
    python -m onfinished --log-level DEBUG     # completion tracing too

Try:
    curl http://127.0.0.1:8080/                 # finishes immediately
    curl http://127.0.0.1:8080/stream           # finishes after ~1s
    curl -m 0.5 http://127.0.0.1:8080/stream    # client gives up: aborted

Settings not given on the command line come from HTTP_* environment
variables (see ServerConfig.from_env).

=============================================================================
"""

import argparse
import asyncio
import sys

from . import __version__
from .config import ServerConfig
from .http import HTTPServer, IncomingMessage, ServerResponse
from .middleware import AccessLogger


def demo_handler(request: IncomingMessage, response: ServerResponse) -> None:
    """
    /        plain text, ended right away
    /stream  five chunks, 200 ms apart
    """
    response.set_header("Content-Type", "text/plain; charset=utf-8")

    if request.path == "/stream":
        loop = asyncio.get_running_loop()
        response.write_head(200)
        for i in range(5):
            loop.call_later(0.2 * i, response.write, f"chunk {i}\n")
        loop.call_later(1.0, response.end)
        return

    if request.path != "/":
        response.status = 404
        response.end("Not Found\n")
        return

    response.end("hello, world!\n")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m onfinished",
        description="Demo HTTP server with completion-driven access logging",
    )
    parser.add_argument("--host", "-H", default=None, help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port to listen on (default: 8080)")
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Access log format (default: text)",
    )
    parser.add_argument("--no-keep-alive", action="store_true", help="Close the connection after every response")
    parser.add_argument("--version", "-v", action="version", version=f"onfinished {__version__}")

    args = parser.parse_args(argv)

    config = ServerConfig.from_env()
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format
    if args.no_keep_alive:
        config.keep_alive = False

    try:
        server = HTTPServer(
            AccessLogger(demo_handler, log_format=config.log_format, skip_paths=["/favicon.ico"]),
            config,
        )
        server.run()
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
