"""
Public completion API.

    on_finished(message, listener)  → call listener(error) once, when the
                                      request/response reaches its end
    is_finished(message)            → has it already?

Example:
    def handler(request, response):
        started = time.time()
        on_finished(response, lambda error: record(time.time() - started, error))
        response.end(b"hello")
"""

from typing import Any, Callable, Optional, TypeVar

from .dispatcher import register
from .registry import get_or_create


M = TypeVar("M")


def on_finished(message: M, listener: Callable[[Optional[BaseException]], Any]) -> M:
    """
    Invoke `listener` exactly once when `message` reaches a terminal state.

    The listener receives the terminal error, or None when the message
    completed cleanly (or was aborted without an error object). If the
    message is already finished, the listener still fires, with the stored
    outcome, on the next loop iteration.

    Args:
        message: An IncomingMessage or ServerResponse (or anything shaped
                 like one).
        listener: Single-argument callable.

    Returns:
        The message, for chaining.

    Raises:
        UnsupportedMessageKind: If `message` is neither a request nor
                                a response.
    """
    attachment = get_or_create(message)
    register(attachment, listener)
    return message


def is_finished(message: Any) -> bool:
    """
    Check whether a message has already reached its terminal state.

    Raises:
        UnsupportedMessageKind: If `message` is neither a request nor
                                a response.
    """
    return get_or_create(message).finished
