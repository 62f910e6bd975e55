"""
Unit tests for on_finished() / is_finished() driven by fake messages.
"""

import asyncio
import logging

import pytest

from onfinished import UnsupportedMessageKind, is_finished, on_finished
from onfinished.core.registry import peek

from conftest import FakeConnection, FakeRequest, FakeResponse, Recorder


class TestIsFinished:
    """Tests for is_finished()."""

    def test_false_before_completion(self, fake_response):
        assert is_finished(fake_response) is False

    def test_true_after_finish(self, fake_response):
        is_finished(fake_response)
        fake_response.finish()
        assert is_finished(fake_response) is True

    def test_true_after_request_end(self, fake_request):
        on_finished(fake_request, lambda error: None)
        fake_request.end()
        assert is_finished(fake_request) is True

    def test_already_finished_on_first_query(self, fake_response):
        """Signals that fired before anyone asked are read from the flags."""
        fake_response.finished = True
        assert is_finished(fake_response) is True

    def test_stays_true_when_more_signals_fire(self, fake_response, connection):
        on_finished(fake_response, lambda error: None)
        fake_response.finish()
        connection.emit("close", False)
        assert is_finished(fake_response) is True

    def test_rejects_non_messages(self):
        with pytest.raises(UnsupportedMessageKind):
            is_finished(object())


class TestOnFinished:
    """Tests for listeners registered before completion."""

    def test_returns_the_message(self, fake_response):
        assert on_finished(fake_response, lambda error: None) is fake_response

    def test_clean_finish(self, fake_response, recorder):
        on_finished(fake_response, recorder)
        assert recorder.count == 0

        fake_response.finish()

        assert recorder.calls == [None]

    def test_fires_exactly_once(self, fake_response, connection, recorder):
        """Test that later signals never re-invoke the listener."""
        connection.on("error", lambda error: None)
        on_finished(fake_response, recorder)

        fake_response.finish()
        fake_response.emit("close")
        connection.emit("error", ConnectionResetError("late"))
        connection.emit("close", True)

        assert recorder.calls == [None]

    def test_primary_error(self, fake_response, recorder):
        on_finished(fake_response, recorder)
        error = BrokenPipeError("write failed")

        fake_response.emit("error", error)

        assert recorder.calls == [error]

    def test_connection_error(self, fake_request, connection, recorder):
        on_finished(fake_request, recorder)
        error = ConnectionResetError("reset")

        connection.emit("error", error)
        connection.emit("close", True)

        assert recorder.calls == [error]

    def test_abort_without_error_reports_none(self, fake_response, connection, recorder):
        on_finished(fake_response, recorder)

        connection.emit("close", False)

        assert recorder.calls == [None]
        assert is_finished(fake_response) is True

    def test_primary_close_reports_none(self, fake_request, recorder):
        on_finished(fake_request, recorder)
        fake_request.emit("close")
        assert recorder.calls == [None]

    def test_listeners_fire_in_registration_order(self, fake_response):
        calls = []
        on_finished(fake_response, lambda error: calls.append("a"))
        on_finished(fake_response, lambda error: calls.append("b"))
        on_finished(fake_response, lambda error: calls.append("c"))

        fake_response.finish()

        assert calls == ["a", "b", "c"]

    def test_same_listener_twice_fires_twice(self, fake_response, recorder):
        on_finished(fake_response, recorder)
        on_finished(fake_response, recorder)

        fake_response.finish()

        assert recorder.count == 2

    def test_failing_listener_does_not_stop_others(self, fake_response, recorder, caplog):
        def broken(error):
            raise RuntimeError("listener bug")

        on_finished(fake_response, broken)
        on_finished(fake_response, recorder)

        with caplog.at_level(logging.ERROR, logger="onfinished.core.dispatcher"):
            fake_response.finish()

        assert recorder.calls == [None]
        assert any("raised" in r.getMessage() for r in caplog.records)

    def test_cancelled_listener_does_not_drop_the_rest(self, fake_response, recorder):
        def cancelled(error):
            raise asyncio.CancelledError()

        on_finished(fake_response, cancelled)
        on_finished(fake_response, recorder)

        with pytest.raises(asyncio.CancelledError):
            fake_response.finish()

        assert recorder.calls == [None]
        assert is_finished(fake_response) is True

    def test_message_without_connection(self, recorder):
        response = FakeResponse(connection=None)
        on_finished(response, recorder)
        response.finish()
        assert recorder.calls == [None]

    def test_already_terminal_with_connection_error(self, recorder):
        connection = FakeConnection()
        connection.closed = True
        connection.error = ConnectionResetError("reset")
        request = FakeRequest(connection)

        on_finished(request, recorder)

        assert recorder.calls == [connection.error]

    def test_rejects_non_messages(self):
        with pytest.raises(UnsupportedMessageKind):
            on_finished("not a message", lambda error: None)

    def test_rejects_messages_that_cannot_be_tracked(self):
        class Slotted:
            __slots__ = ("finished", "headers_sent")

            def __init__(self):
                self.finished = False
                self.headers_sent = False

            def on(self, event, listener):
                pass

            def remove_listener(self, event, listener):
                pass

        with pytest.raises(UnsupportedMessageKind):
            on_finished(Slotted(), lambda error: None)


class TestLateRegistration:
    """Tests for listeners registered after the outcome is decided."""

    def test_without_loop_fires_immediately(self, fake_response, recorder):
        on_finished(fake_response, lambda error: None)
        fake_response.finish()

        on_finished(fake_response, recorder)

        assert recorder.calls == [None]

    def test_receives_stored_error(self, fake_request, connection, recorder):
        error = ConnectionResetError("reset")
        on_finished(fake_request, lambda e: None)
        connection.emit("error", error)

        on_finished(fake_request, recorder)

        assert recorder.calls == [error]

    @pytest.mark.asyncio
    async def test_under_loop_fires_on_next_iteration(self, fake_response, recorder):
        on_finished(fake_response, lambda error: None)
        fake_response.finish()

        on_finished(fake_response, recorder)
        assert recorder.count == 0

        await asyncio.sleep(0)
        assert recorder.calls == [None]

    def test_does_not_reinvoke_earlier_listeners(self, fake_response):
        first = Recorder()
        second = Recorder()
        on_finished(fake_response, first)
        fake_response.finish()

        on_finished(fake_response, second)

        assert first.count == 1
        assert second.count == 1

    def test_does_not_reobserve_signals(self, fake_response, connection):
        on_finished(fake_response, lambda error: None)
        fake_response.finish()

        on_finished(fake_response, lambda error: None)

        assert fake_response.listener_count("finish") == 0
        assert connection.listener_count("close") == 0

    def test_registering_from_inside_a_listener(self, fake_response):
        """A listener registered during the drain joins the same pass."""
        calls = []

        def outer(error):
            calls.append("outer")
            on_finished(fake_response, lambda e: calls.append("nested"))

        on_finished(fake_response, outer)
        on_finished(fake_response, lambda e: calls.append("second"))

        fake_response.finish()

        assert calls == ["outer", "second", "nested"]


class TestObserverWiring:
    """Tests for how many raw listeners the tracker installs."""

    def test_one_observer_per_signal(self, fake_response, connection):
        on_finished(fake_response, lambda error: None)

        for event in ("finish", "error", "close"):
            assert fake_response.listener_count(event) == 1
        for event in ("error", "close"):
            assert connection.listener_count(event) == 1

    def test_many_registrations_no_leak_warning(self, fake_response, connection, caplog):
        done = Recorder()
        noops = Recorder()

        with caplog.at_level(logging.WARNING):
            for _ in range(400):
                on_finished(fake_response, noops)
            on_finished(fake_response, done)

        assert caplog.records == []
        assert fake_response.listener_count("finish") == 1
        assert connection.listener_count("close") == 1

        fake_response.finish()

        assert noops.count == 400
        assert done.count == 1

    def test_observers_removed_on_completion(self, fake_response, connection):
        on_finished(fake_response, lambda error: None)
        fake_response.finish()

        assert fake_response.event_names() == []
        assert connection.event_names() == []
        assert peek(fake_response).wired is False

    def test_is_finished_alone_wires_the_message(self, fake_request):
        is_finished(fake_request)
        assert peek(fake_request).wired is True

    def test_keep_alive_isolation(self, connection):
        """A listener for one message never fires for another on the same connection."""
        first_response, second_response = FakeResponse(connection), FakeResponse(connection)
        first, second = Recorder(), Recorder()

        on_finished(first_response, first)
        first_response.finish()

        on_finished(second_response, second)
        assert first.count == 1
        assert second.count == 0

        connection.emit("close", False)

        assert first.count == 1
        assert second.calls == [None]
