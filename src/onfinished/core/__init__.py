"""
Core completion tracking.

    events.py      - EventEmitter, the raw event mechanism
    adapter.py     - Which emitters decide a message's completion
    state.py       - Attachment and the first-wins state machine
    dispatcher.py  - Ordered, exactly-once listener delivery
    registry.py    - One attachment (and one wiring) per message
    finished.py    - on_finished() / is_finished()
"""

from .adapter import MessageKind, SignalSources, UnsupportedMessageKind, select_signal_sources
from .events import EventEmitter
from .finished import is_finished, on_finished
from .registry import get_or_create, peek
from .state import Attachment, CompletionState

__all__ = [
    "EventEmitter",
    "MessageKind",
    "SignalSources",
    "UnsupportedMessageKind",
    "select_signal_sources",
    "Attachment",
    "CompletionState",
    "get_or_create",
    "peek",
    "on_finished",
    "is_finished",
]
