"""Tests for the RealtimeSubscriber connection state machine."""

import time

import pytest

from services.realtime_broadcaster import RealtimeBroadcaster
from services.realtime_subscriber import ConnectionState, RealtimeSubscriber
from tests.fixtures import make_change_event


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class FlakyConnect:
    """Transport factory that fails ``failures`` times before connecting."""

    def __init__(self, broadcaster, failures=0):
        self.broadcaster = broadcaster
        self.failures = failures
        self.calls = 0
        self.feeds = []

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("network down")
        feed = self.broadcaster.subscribe()
        self.feeds.append(feed)
        return feed


@pytest.fixture
def broadcaster():
    b = RealtimeBroadcaster()
    yield b
    b.close()


def make_subscriber(connect, handler, **kwargs):
    kwargs.setdefault("base_delay", 0.01)
    kwargs.setdefault("poll_timeout", 0.02)
    return RealtimeSubscriber("test-subscriber", connect=connect, handler=handler, **kwargs)


class TestDispatch:
    def test_applies_each_change_once(self, broadcaster):
        received = []
        subscriber = make_subscriber(broadcaster.subscribe, received.append)
        subscriber.start()
        try:
            assert wait_for(lambda: subscriber.state == ConnectionState.CONNECTED)
            event = make_change_event()
            broadcaster.publish(event)
            broadcaster.publish(event)
            assert wait_for(lambda: subscriber.duplicates == 1)
            assert received == [event]
            assert subscriber.applied == 1
        finally:
            subscriber.stop()
        assert subscriber.state == ConnectionState.DISCONNECTED

    def test_handler_errors_do_not_stop_dispatch(self, broadcaster):
        seen = []

        def handler(change):
            seen.append(change.asset_id)
            if change.asset_id == "bad":
                raise RuntimeError("boom")

        subscriber = make_subscriber(broadcaster.subscribe, handler)
        subscriber.start()
        try:
            assert wait_for(lambda: subscriber.state == ConnectionState.CONNECTED)
            broadcaster.publish(make_change_event(asset_id="bad"))
            broadcaster.publish(make_change_event(asset_id="good"))
            assert wait_for(lambda: subscriber.applied == 1)
            assert subscriber.handler_errors == 1
            assert seen == ["bad", "good"]
        finally:
            subscriber.stop()


class TestReconnect:
    def test_closed_feed_triggers_reconnect(self, broadcaster):
        transitions = []
        connect = FlakyConnect(broadcaster)
        subscriber = make_subscriber(
            connect, lambda change: None,
            on_state_change=lambda old, new: transitions.append(new),
        )
        subscriber.start()
        try:
            assert wait_for(lambda: len(connect.feeds) == 1)
            assert wait_for(lambda: subscriber.state == ConnectionState.CONNECTED)
            connect.feeds[0].close()
            assert wait_for(lambda: len(connect.feeds) == 2)
            assert wait_for(lambda: subscriber.state == ConnectionState.CONNECTED)
        finally:
            subscriber.stop()
        assert ConnectionState.RECONNECTING in transitions
        assert subscriber.reconnect_attempts == 0

    def test_recovers_from_failed_connects(self, broadcaster):
        connect = FlakyConnect(broadcaster, failures=2)
        subscriber = make_subscriber(connect, lambda change: None, max_retries=3)
        subscriber.start()
        try:
            assert wait_for(lambda: subscriber.state == ConnectionState.CONNECTED)
            assert connect.calls == 3
        finally:
            subscriber.stop()

    def test_gives_up_after_max_retries(self, broadcaster):
        connect = FlakyConnect(broadcaster, failures=100)
        subscriber = make_subscriber(connect, lambda change: None, max_retries=2)
        subscriber.start()
        try:
            assert wait_for(lambda: subscriber.state == ConnectionState.ERROR)
            assert connect.calls == 3
            assert subscriber.reconnect_attempts == 3
        finally:
            subscriber.stop()

    def test_reset_after_error(self, broadcaster):
        connect = FlakyConnect(broadcaster, failures=2)
        subscriber = make_subscriber(connect, lambda change: None, max_retries=1)
        subscriber.start()
        try:
            assert wait_for(lambda: subscriber.state == ConnectionState.ERROR)
            subscriber.reset()
            assert wait_for(lambda: subscriber.state == ConnectionState.CONNECTED)
            assert subscriber.reconnect_attempts == 0
        finally:
            subscriber.stop()

    def test_start_is_noop_when_running(self, broadcaster):
        connect = FlakyConnect(broadcaster)
        subscriber = make_subscriber(connect, lambda change: None)
        subscriber.start()
        try:
            assert wait_for(lambda: subscriber.state == ConnectionState.CONNECTED)
            subscriber.start()
            time.sleep(0.05)
            assert connect.calls == 1
        finally:
            subscriber.stop()
