"""
Unit tests for the EventEmitter.
"""

import logging

import pytest

from onfinished.core.events import EventEmitter


class TestRegistration:
    """Tests for on/once/remove_listener."""

    def test_listeners_called_in_registration_order(self):
        """Test that emit calls listeners in the order they were added."""
        emitter = EventEmitter()
        calls = []
        emitter.on("x", lambda: calls.append(1))
        emitter.on("x", lambda: calls.append(2))

        assert emitter.emit("x") is True
        assert calls == [1, 2]

    def test_emit_passes_arguments(self):
        emitter = EventEmitter()
        received = []
        emitter.on("data", lambda *args: received.append(args))

        emitter.emit("data", b"a", 1)

        assert received == [(b"a", 1)]

    def test_emit_without_listeners_returns_false(self):
        assert EventEmitter().emit("nothing") is False

    def test_once_fires_a_single_time(self):
        """Test that once() listeners are removed after the first call."""
        emitter = EventEmitter()
        calls = []
        emitter.once("end", lambda: calls.append("end"))

        emitter.emit("end")
        emitter.emit("end")

        assert calls == ["end"]
        assert emitter.listener_count("end") == 0

    def test_remove_once_listener_by_original_function(self):
        emitter = EventEmitter()
        calls = []

        def listener():
            calls.append(1)

        emitter.once("end", listener)
        emitter.remove_listener("end", listener)
        emitter.emit("end")

        assert calls == []

    def test_remove_listener_removes_one_registration(self):
        emitter = EventEmitter()
        calls = []

        def listener():
            calls.append(1)

        emitter.on("x", listener).on("x", listener)
        emitter.off("x", listener)
        emitter.emit("x")

        assert calls == [1]

    def test_remove_unknown_listener_is_noop(self):
        emitter = EventEmitter()
        emitter.remove_listener("x", print)
        assert emitter.event_names() == []

    def test_remove_all_listeners(self):
        emitter = EventEmitter()
        emitter.on("a", print).on("b", print)

        emitter.remove_all_listeners("a")
        assert emitter.event_names() == ["b"]

        emitter.remove_all_listeners()
        assert emitter.event_names() == []

    def test_listener_added_during_emit_waits_for_next_emit(self):
        """Test that emit iterates over a snapshot of the listeners."""
        emitter = EventEmitter()
        calls = []

        def first():
            calls.append("first")
            emitter.on("x", lambda: calls.append("late"))

        emitter.on("x", first)
        emitter.emit("x")
        assert calls == ["first"]

        emitter.emit("x")
        assert calls == ["first", "first", "late"]


class TestErrorEvent:
    """Tests for the special "error" event."""

    def test_unhandled_error_is_raised(self):
        emitter = EventEmitter()
        with pytest.raises(ConnectionResetError):
            emitter.emit("error", ConnectionResetError("reset"))

    def test_unhandled_error_without_exception(self):
        with pytest.raises(RuntimeError, match="Unhandled 'error' event"):
            EventEmitter().emit("error", "boom")

    def test_handled_error_is_not_raised(self):
        emitter = EventEmitter()
        errors = []
        emitter.on("error", errors.append)

        error = ValueError("bad")
        emitter.emit("error", error)

        assert errors == [error]


class TestLeakWarning:
    """Tests for the per-event listener limit."""

    def test_warns_once_above_limit(self, caplog):
        emitter = EventEmitter()

        with caplog.at_level(logging.WARNING, logger="onfinished.core.events"):
            for _ in range(12):
                emitter.on("close", print)

        warnings = [r for r in caplog.records if "memory leak" in r.getMessage()]
        assert len(warnings) == 1
        assert "11 'close' listeners added to EventEmitter" in warnings[0].getMessage()

    def test_no_warning_at_limit(self, caplog):
        emitter = EventEmitter()

        with caplog.at_level(logging.WARNING, logger="onfinished.core.events"):
            for _ in range(10):
                emitter.on("close", print)

        assert caplog.records == []

    def test_zero_disables_warning(self, caplog):
        emitter = EventEmitter().set_max_listeners(0)

        with caplog.at_level(logging.WARNING, logger="onfinished.core.events"):
            for _ in range(50):
                emitter.on("close", print)

        assert caplog.records == []
        assert emitter.get_max_listeners() == 0

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            EventEmitter().set_max_listeners(-1)

    def test_listeners_returns_original_functions(self):
        emitter = EventEmitter()

        def listener():
            pass

        emitter.once("end", listener)
        assert emitter.listeners("end") == [listener]
