"""
Listener dispatch for completion attachments.

Two entry points:

    register(attachment, listener)   queue it, or deliver the stored
                                     outcome if already finished
    drain(attachment)                fire every queued listener once,
                                     in order, and empty the queue

Late listeners (registered after the outcome was decided) are delivered
on the next turn of the running asyncio loop, or immediately when no loop
is running. Either way the signals are never looked at again.
"""

import asyncio
import logging
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


def invoke(listener: Callable[[Optional[BaseException]], Any], error: Optional[BaseException]) -> None:
    """
    Call one listener with the terminal error.

    A failing listener must not stop the others, so its exception is
    logged with the traceback and not re-raised.
    """
    try:
        listener(error)
    except Exception:
        logger.exception(f"Completion listener {listener!r} raised")


def schedule(listener: Callable[[Optional[BaseException]], Any], error: Optional[BaseException]) -> None:
    """Deliver an already-decided outcome to a late listener."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        # No event loop (plain synchronous use): deliver right away
        invoke(listener, error)
    else:
        loop.call_soon(invoke, listener, error)


def register(attachment, listener: Callable[[Optional[BaseException]], Any]) -> None:
    """
    Add a listener to an attachment.

    While the attachment is pending, or while its terminal drain is in
    progress, the listener joins the queue. Once finished, it receives
    the stored error via schedule().
    """
    if attachment.finished and not attachment.draining:
        schedule(listener, attachment.error)
    else:
        attachment.listeners.append(listener)


def drain(attachment) -> None:
    """
    Invoke every queued listener exactly once, in registration order.

    Index-based on purpose: a listener may register another listener on
    the same message while we are draining. The queue grows under us and
    the newcomer fires in this same pass, after everything queued before it.
    """
    queue = attachment.listeners
    interrupted: Optional[BaseException] = None
    attachment.draining = True
    try:
        index = 0
        while index < len(queue):
            listener = queue[index]
            index += 1
            try:
                invoke(listener, attachment.error)
            except BaseException as e:
                # CancelledError, KeyboardInterrupt...: finish the pass first
                if interrupted is None:
                    interrupted = e
    finally:
        queue.clear()
        attachment.draining = False

    if interrupted is not None:
        raise interrupted
