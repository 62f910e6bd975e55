"""
=============================================================================
ATTACHMENT REGISTRY
=============================================================================

Maps a message to its one and only Attachment, wiring observers the first
time the message is seen.

=============================================================================
WHY ONE WIRING PER MESSAGE?
=============================================================================

The naive approach installs raw listeners for every caller:

    for _ in range(400):
        on_finished(response, callback)

    ──► 400 "finish" listeners on the response
    ──► 400 "close"  listeners on the CONNECTION (shared, long-lived!)
    ──► leak warning after the 10th, memory growth on keep-alive sockets

With one attachment per message, the raw emitters only ever see ONE
observer per event, no matter how many listeners queue up:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   response ──"finish"──┐                                             │
    │   response ──"error"───┤                                             │
    │   response ──"close"───┼──► Attachment ──► [cb1, cb2, ..., cb400]    │
    │   connection ─"error"──┤      (one per                               │
    │   connection ─"close"──┘       message)                              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHERE IS THE ATTACHMENT STORED?
=============================================================================

On the message itself, as an extra attribute. No global dict keyed by
message:

- nothing to clean up: the attachment dies with its message
- identity scoped: messages do not need to be hashable or comparable
- a keep-alive connection handling thousands of requests never accumulates
  entries for requests that are long gone

The observers hold the attachment, never the message, and they are removed
from both the message and the connection when the outcome is decided.

=============================================================================
"""

import logging
from typing import Any, Optional

from .adapter import (
    UnsupportedMessageKind,
    current_outcome,
    select_signal_sources,
    signal_error,
)
from .state import Attachment


logger = logging.getLogger(__name__)

ATTACHMENT_ATTR = "_on_finished_attachment"


def peek(message: Any) -> Optional[Attachment]:
    """Return the message's attachment if it exists, without creating one."""
    attachment = getattr(message, ATTACHMENT_ATTR, None)
    return attachment if isinstance(attachment, Attachment) else None


def get_or_create(message: Any) -> Attachment:
    """
    Return the attachment for a message, creating and wiring it once.

    Raises:
        UnsupportedMessageKind: If the message is not a request/response,
                                or cannot carry the attachment.
    """
    attachment = peek(message)
    if attachment is not None:
        return attachment

    # ─────────────────────────────────────────────────────────────────────
    # STEP 1: Which objects decide completion?
    # ─────────────────────────────────────────────────────────────────────
    sources = select_signal_sources(message)

    attachment = Attachment(label=_label(message, sources.kind.value))
    try:
        setattr(message, ATTACHMENT_ATTR, attachment)
    except AttributeError as e:
        raise UnsupportedMessageKind(
            f"Cannot track completion of {type(message).__name__}: {e}"
        ) from e

    # ─────────────────────────────────────────────────────────────────────
    # STEP 2: Maybe it already finished before anyone asked
    # ─────────────────────────────────────────────────────────────────────
    terminal, error = current_outcome(message, sources)
    if terminal:
        attachment.resolve(error)
        return attachment

    # ─────────────────────────────────────────────────────────────────────
    # STEP 3: One observer per (source, event), routed to resolve()
    # ─────────────────────────────────────────────────────────────────────
    for source in sources:
        for event in source.events:
            _observe(attachment, source.emitter, event)

    attachment.wired = True
    logger.debug(f"[{attachment.label}] completion observers installed")
    return attachment


def _observe(attachment: Attachment, emitter: Any, event: str) -> None:
    def observer(*args):
        attachment.resolve(signal_error(args))

    emitter.on(event, observer)
    attachment.add_unwire(lambda: emitter.remove_listener(event, observer))


def _label(message: Any, kind: str) -> str:
    connection = getattr(message, "connection", None)
    connection_id = getattr(connection, "id", None)
    if connection_id:
        return f"{connection_id}:{kind}"
    return kind
