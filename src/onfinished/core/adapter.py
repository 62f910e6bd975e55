"""
=============================================================================
MESSAGE ADAPTER
=============================================================================

Decides WHICH objects tell us that a message is done, and turns their raw
events into one uniform shape: "terminal, with this error (or None)".

=============================================================================
REQUESTS AND RESPONSES ARE NOT SYMMETRIC
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        SIGNAL SOURCES                                │
    ├──────────────┬──────────────────────────┬───────────────────────────┤
    │ Message kind │ PRIMARY (the message)    │ FALLBACK (the connection) │
    ├──────────────┼──────────────────────────┼───────────────────────────┤
    │ RESPONSE     │ "finish"  → clean        │ "error"  → carried error  │
    │              │ "error"   → carried error│ "close"  → abort, no error│
    │              │ "close"   → abort        │                           │
    ├──────────────┼──────────────────────────┼───────────────────────────┤
    │ REQUEST      │ "end"     → clean        │ "error"  → carried error  │
    │              │ "error"   → carried error│ "close"  → abort, no error│
    │              │ "close"   → abort        │                           │
    └──────────────┴──────────────────────────┴───────────────────────────┘

The connection is SHARED. With keep-alive, request #1 and request #2 travel
over the same socket:

    Connection ──── GET /a ──── GET /b ──── GET /c ────► close
                    req #1      req #2      req #3

"The connection closed" says nothing about whether request #1 already ended
long before. That is why the connection is only a FALLBACK: its signals
count for a message only while that message's own primary signal has not
resolved it yet. The registry removes the fallback observers the moment a
message resolves, so they never linger on the connection.

=============================================================================
NORMALIZATION
=============================================================================

Raw events carry different arguments:

    response.emit("finish")               → no arguments
    response.emit("error", exc)           → the exception
    connection.emit("close", had_error)   → a bool, NOT an error!

signal_error() looks at the first argument and only treats it as the
outcome's error when it is an actual exception instance.

=============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple


class UnsupportedMessageKind(TypeError):
    """
    Raised when an object is neither a request nor a response message.

    This is the only error on_finished() and is_finished() raise
    synchronously. Transport failures are never raised, they are
    delivered to listeners.
    """


class MessageKind(Enum):
    """The two supported message variants."""
    REQUEST = "request"      # Inbound stream being read
    RESPONSE = "response"    # Outbound stream being written


PRIMARY_EVENTS = {
    MessageKind.REQUEST: ("end", "error", "close"),
    MessageKind.RESPONSE: ("finish", "error", "close"),
}

FALLBACK_EVENTS = ("error", "close")


@dataclass(frozen=True)
class SignalSource:
    """An emitter plus the events on it that end a message."""
    emitter: Any
    events: Tuple[str, ...]


@dataclass(frozen=True)
class SignalSources:
    """
    Ground truth for one message's completion.

    Attributes:
        kind: Which variant the message is.
        primary: The message's own completion signals.
        fallback: The shared connection's abrupt-termination signals,
                  or None when the message has no connection.
    """
    kind: MessageKind
    primary: SignalSource
    fallback: Optional[SignalSource] = None

    def __iter__(self):
        yield self.primary
        if self.fallback is not None:
            yield self.fallback

    @property
    def connection(self) -> Any:
        return self.fallback.emitter if self.fallback is not None else None


def _is_emitter(obj: Any) -> bool:
    return callable(getattr(obj, "on", None)) and callable(getattr(obj, "remove_listener", None))


def message_kind(message: Any) -> MessageKind:
    """
    Classify a message by its shape.

    A response exposes a boolean `finished` and a `headers_sent` flag,
    a request exposes a boolean `complete`. Both must be emitters.

    Raises:
        UnsupportedMessageKind: If the object matches neither variant.
    """
    if _is_emitter(message):
        if isinstance(getattr(message, "finished", None), bool) and hasattr(message, "headers_sent"):
            return MessageKind.RESPONSE
        if isinstance(getattr(message, "complete", None), bool):
            return MessageKind.REQUEST

    raise UnsupportedMessageKind(
        f"Expected an HTTP request or response message, got {type(message).__name__}"
    )


def select_signal_sources(message: Any) -> SignalSources:
    """
    Select the primary and fallback signal sources for a message.

    Raises:
        UnsupportedMessageKind: If the message shape is not supported.
    """
    kind = message_kind(message)
    primary = SignalSource(message, PRIMARY_EVENTS[kind])

    connection = getattr(message, "connection", None)
    fallback = None
    if connection is not None and _is_emitter(connection):
        fallback = SignalSource(connection, FALLBACK_EVENTS)

    return SignalSources(kind=kind, primary=primary, fallback=fallback)


def signal_error(args: Tuple[Any, ...]) -> Optional[BaseException]:
    """Extract the carried error from a raw event's arguments, if any."""
    if args and isinstance(args[0], BaseException):
        return args[0]
    return None


def current_outcome(message: Any, sources: SignalSources) -> Tuple[bool, Optional[BaseException]]:
    """
    Check whether a message is ALREADY terminal, before any observer exists.

    Someone may ask about a message for the first time after its signals
    have already fired (nobody was listening back then). The objects'
    own flags still tell the story:

        response.finished    → completed cleanly
        request.complete     → completed cleanly
        request.aborted      → aborted
        connection.error     → failed, even while the connection is closing
        connection.closed    → aborted, with connection.error if recorded

    Returns:
        Tuple of (is_terminal, error).
    """
    if sources.kind is MessageKind.RESPONSE and message.finished:
        return True, None
    if sources.kind is MessageKind.REQUEST and message.complete:
        return True, None

    connection = sources.connection
    connection_error = getattr(connection, "error", None)
    if not isinstance(connection_error, BaseException):
        connection_error = None

    if getattr(message, "aborted", False) is True:
        return True, connection_error
    # Recorded before the connection reports "error", so a message first
    # seen while that error is being announced still gets it
    if connection_error is not None:
        return True, connection_error
    if connection is not None and getattr(connection, "closed", False) is True:
        return True, connection_error

    return False, None
