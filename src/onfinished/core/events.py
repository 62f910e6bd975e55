"""
=============================================================================
EVENT EMITTER
=============================================================================

The raw event mechanism every HTTP object in this package is built on.

Connections, requests and responses do not call each other directly when
something happens to them. They EMIT a named event, and whoever cares has
registered a listener for that name:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       EMITTER / LISTENER FLOW                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   response.on("finish", log_line)       ◄── registration             │
    │   response.on("finish", release_slot)                                │
    │                                                                      │
    │   response.end(b"bye")                                               │
    │        │                                                             │
    │        └──► emit("finish")                                           │
    │                 ├──► log_line()        (registration order)          │
    │                 └──► release_slot()                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THE LISTENER LIMIT
=============================================================================

A connection lives much longer than any single request on it. Code that
naively does `connection.on("close", ...)` once per request keeps adding
listeners on a keep-alive connection forever. That is a memory leak, and
it is one of the most common real production bugs with event emitters.

To make it visible, each emitter has a per-event listener limit (10 by
default). Going over it does not fail, it logs ONE warning per event:

    Possible EventEmitter memory leak detected. 11 'close' listeners
    added to Connection. Use set_max_listeners() to increase limit.

A limit of 0 disables the check.

=============================================================================
THE "error" EVENT
=============================================================================

"error" is special: emitting it when nobody listens raises the error.
Errors must never disappear silently.

=============================================================================
"""

import logging
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """
    Minimal synchronous event emitter.

    Listeners are called synchronously, in registration order, with the
    positional arguments passed to emit(). Adding or removing listeners
    while an event is being emitted does not change who receives THAT
    emission (we iterate over a snapshot).

    Usage:
        emitter = EventEmitter()
        emitter.on("data", chunks.append)
        emitter.once("end", lambda: print("done"))
        emitter.emit("data", b"hello")
        emitter.emit("end")
    """

    default_max_listeners = 10

    def __init__(self):
        self._events: Dict[str, List[Listener]] = {}
        self._max_listeners: Optional[int] = None
        self._leak_warned: set = set()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def on(self, event: str, listener: Listener) -> "EventEmitter":
        """
        Register a listener for an event.

        Returns self for method chaining.
        """
        listeners = self._events.setdefault(event, [])
        listeners.append(listener)
        self._check_leak(event, len(listeners))
        return self

    add_listener = on

    def once(self, event: str, listener: Listener) -> "EventEmitter":
        """Register a listener that is removed before its first call."""
        def wrapper(*args):
            self.remove_listener(event, wrapper)
            return listener(*args)

        wrapper.listener = listener
        return self.on(event, wrapper)

    def remove_listener(self, event: str, listener: Listener) -> "EventEmitter":
        """
        Remove the most recently added registration of a listener.

        Listeners registered with once() can be removed by passing the
        original function.
        """
        listeners = self._events.get(event)
        if not listeners:
            return self

        for index in range(len(listeners) - 1, -1, -1):
            candidate = listeners[index]
            if candidate is listener or getattr(candidate, "listener", None) is listener:
                del listeners[index]
                break

        if not listeners:
            del self._events[event]
            self._leak_warned.discard(event)
        return self

    off = remove_listener

    def remove_all_listeners(self, event: Optional[str] = None) -> "EventEmitter":
        """Remove every listener of one event, or of all events."""
        if event is None:
            self._events.clear()
            self._leak_warned.clear()
        else:
            self._events.pop(event, None)
            self._leak_warned.discard(event)
        return self

    # =========================================================================
    # EMISSION
    # =========================================================================

    def emit(self, event: str, *args: Any) -> bool:
        """
        Call every listener of an event with the given arguments.

        Returns:
            True if the event had listeners, False otherwise.

        Raises:
            The error itself when "error" is emitted without listeners.
        """
        listeners = self._events.get(event)
        if not listeners:
            if event == "error":
                error = args[0] if args else None
                if isinstance(error, BaseException):
                    raise error
                raise RuntimeError(f"Unhandled 'error' event ({error!r})")
            return False

        # Snapshot: listeners added/removed by a listener apply next time
        for listener in list(listeners):
            listener(*args)
        return True

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def listeners(self, event: str) -> List[Listener]:
        """Copy of the listeners registered for an event."""
        return [getattr(fn, "listener", fn) for fn in self._events.get(event, [])]

    def listener_count(self, event: str) -> int:
        return len(self._events.get(event, []))

    def event_names(self) -> List[str]:
        return list(self._events)

    # =========================================================================
    # LEAK DETECTION
    # =========================================================================

    def set_max_listeners(self, n: int) -> "EventEmitter":
        """Set the per-event listener limit (0 disables the warning)."""
        if n < 0:
            raise ValueError(f"max listeners must be >= 0, got {n}")
        self._max_listeners = n
        return self

    def get_max_listeners(self) -> int:
        if self._max_listeners is None:
            return self.default_max_listeners
        return self._max_listeners

    def _check_leak(self, event: str, count: int) -> None:
        limit = self.get_max_listeners()
        if limit <= 0 or count <= limit or event in self._leak_warned:
            return

        self._leak_warned.add(event)
        logger.warning(
            f"Possible EventEmitter memory leak detected. {count} '{event}' "
            f"listeners added to {type(self).__name__}. "
            f"Use set_max_listeners() to increase limit"
        )
