"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Settings for the bundled asyncio HTTP server that produces the request and
response messages on_finished() tracks.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m onfinished --port 3000                          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── HTTP_PORT=3000 python -m onfinished                       │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The completion tracker itself has no knobs. The only setting that reaches
it indirectly is max_listeners, the leak-warning threshold every
connection applies to its own listeners.

=============================================================================
"""

import os
from dataclasses import dataclass


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOG_FORMATS = ("text", "json")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """
    Configuration for the HTTP server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog

    HTTP SETTINGS
    - keep_alive, keep_alive_timeout, max_header_size, max_request_size

    EVENTS
    - max_listeners

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only (development)
    - "0.0.0.0" - All network interfaces (production)
    """

    port: int = 8080
    """
    The port number to listen on. 0 asks the OS for a free port, which is
    what the test suite does.
    """

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """
    Enable HTTP keep-alive connections.
    When False every response carries "Connection: close".
    """

    keep_alive_timeout: float = 5.0
    """Idle seconds before a keep-alive connection is closed."""

    max_header_size: int = 64 * 1024  # 64 KB
    """Maximum size of a request head (request line + headers)."""

    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    """Maximum allowed request body size in bytes."""

    # ─────────────────────────────────────────────────────────────────────
    # EVENTS
    # ─────────────────────────────────────────────────────────────────────

    max_listeners: int = 10
    """
    Per-event listener count above which a connection logs a possible
    leak warning. 0 disables the warning.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """
    Access log format: 'json' or 'text'.
    JSON is better for log aggregators, text for human reading.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SERVER IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "onfinished/1.0"
    """Value of the Server response header."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HTTP_HOST               Server host (default: 127.0.0.1)
        HTTP_PORT               Server port (default: 8080)
        HTTP_BACKLOG            Accept queue length (default: 128)
        HTTP_KEEP_ALIVE         Enable keep-alive (default: true)
        HTTP_KEEP_ALIVE_TIMEOUT Idle keep-alive seconds (default: 5)
        HTTP_MAX_LISTENERS      Leak warning threshold (default: 10)
        HTTP_LOG_LEVEL          Logging level (default: INFO)
        HTTP_LOG_FORMAT         text or json (default: text)

        =====================================================================
        """
        return cls(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            backlog=int(os.getenv("HTTP_BACKLOG", "128")),
            keep_alive=_env_bool("HTTP_KEEP_ALIVE", True),
            keep_alive_timeout=float(os.getenv("HTTP_KEEP_ALIVE_TIMEOUT", "5")),
            max_listeners=int(os.getenv("HTTP_MAX_LISTENERS", "10")),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("HTTP_LOG_FORMAT", "text").lower(),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by HTTPServer at construction, so a bad value fails at
        startup and not at the first request.

        Raises:
            ValueError: On the first invalid setting.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")

        if self.max_header_size < 1024:
            raise ValueError("max_header_size must be >= 1024")

        if self.max_request_size < 0:
            raise ValueError("max_request_size must be >= 0")

        if self.max_listeners < 0:
            raise ValueError("max_listeners must be >= 0")

        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {self.log_level}")

        if self.log_format not in _LOG_FORMATS:
            raise ValueError(f"Invalid log_format: {self.log_format}. Must be 'text' or 'json'.")
