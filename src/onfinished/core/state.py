"""
=============================================================================
COMPLETION STATE MACHINE
=============================================================================

Several raw signals can end a message, some of them redundantly and some
of them racing each other:

    client resets socket mid-response
        │
        ├──► connection "error"   (ECONNRESET)
        ├──► response   "close"   (never finished)
        └──► connection "close"   (had_error=True)

Exactly ONE of them decides the outcome: the first one. Everything after
it is ignored.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          STATE DIAGRAM                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │        ┌───────────┐   first signal    ┌────────────┐               │
    │  ───►  │  PENDING  │ ────────────────► │  FINISHED  │ ◄── any later │
    │        └───────────┘   resolve(error)  └────────────┘     signal is │
    │                                                           ignored   │
    │                                                                      │
    │   On the transition, in this order:                                 │
    │     1. state = FINISHED, error recorded                             │
    │     2. all observers removed from message and connection            │
    │     3. queued listeners drained (synchronously)                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

FINISHED is never left. A listener that arrives later gets the SAME stored
error; nothing is recomputed.

=============================================================================
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from .dispatcher import drain


logger = logging.getLogger(__name__)

Listener = Callable[[Optional[BaseException]], Any]


class CompletionState(Enum):
    PENDING = "pending"      # No terminal signal seen yet
    FINISHED = "finished"    # Outcome decided, never changes again


@dataclass(eq=False)
class Attachment:
    """
    Per-message completion record.

    One instance exists per message, created lazily by the registry.

    Attributes:
        state: PENDING until the first terminal signal.
        error: Terminal error, None for a clean (or error-less aborted) finish.
        listeners: Callbacks waiting for the outcome, in registration order.
        wired: True while observers are installed on the signal sources.
        label: Short description of the message, for log lines.
    """

    state: CompletionState = CompletionState.PENDING
    error: Optional[BaseException] = None
    listeners: List[Listener] = field(default_factory=list)
    wired: bool = False
    label: str = ""

    # Internal bookkeeping
    draining: bool = field(default=False, repr=False)
    _unwire: List[Callable[[], Any]] = field(default_factory=list, repr=False)

    @property
    def finished(self) -> bool:
        return self.state is CompletionState.FINISHED

    def add_unwire(self, callback: Callable[[], Any]) -> None:
        """Remember how to remove one installed observer."""
        self._unwire.append(callback)

    def unwire(self) -> None:
        """Remove every installed observer from the signal sources."""
        callbacks, self._unwire = self._unwire, []
        for callback in callbacks:
            callback()
        self.wired = False

    def resolve(self, error: Optional[BaseException] = None) -> bool:
        """
        Decide the terminal outcome (first call wins).

        Args:
            error: The carried error, or None.

        Returns:
            True if this call decided the outcome, False if it was
            already decided and the signal is ignored.
        """
        if self.finished:
            return False

        self.state = CompletionState.FINISHED
        self.error = error

        logger.debug(
            f"[{self.label}] finished"
            + (f" with {type(error).__name__}: {error}" if error is not None else "")
        )

        self.unwire()
        drain(self)
        return True
