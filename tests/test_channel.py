"""Tests for service channels over the in-process bus."""

import threading

import pytest

from common.constants import MAX_DATAGRAM_BYTES
from common.types import ChannelName
from peer.channel import LocalBus

GROUP = ('224.0.0.1', 9001)


class Collector:
    def __init__(self, expected=1):
        self.received = []
        self._lock = threading.Lock()
        self._expected = expected
        self.done = threading.Event()

    def __call__(self, name, data):
        with self._lock:
            self.received.append((name, data))
            if len(self.received) >= self._expected:
                self.done.set()


@pytest.fixture
def bus():
    return LocalBus()


def _channel(bus, handler, group=GROUP, name=ChannelName.MC):
    channel = bus.channel_factory()(name, group, handler, 2)
    channel.start()
    return channel


def test_delivers_to_every_member_including_sender(bus):
    first, second = Collector(), Collector()
    a = _channel(bus, first)
    b = _channel(bus, second)
    try:
        a.send(b'hello')
        assert first.done.wait(5.0)
        assert second.done.wait(5.0)
        assert first.received == [(ChannelName.MC, b'hello')]
        assert second.received == [(ChannelName.MC, b'hello')]
    finally:
        a.stop()
        b.stop()


def test_groups_are_isolated(bus):
    other = Collector()
    a = _channel(bus, Collector())
    b = _channel(bus, other, group=('224.0.0.2', 9002), name=ChannelName.MDB)
    try:
        a.send(b'hello')
        assert not other.done.wait(0.2)
    finally:
        a.stop()
        b.stop()


def test_oversized_datagram_rejected(bus):
    a = _channel(bus, Collector())
    try:
        with pytest.raises(ValueError):
            a.send(b'x' * (MAX_DATAGRAM_BYTES + 1))
    finally:
        a.stop()


def test_handler_error_does_not_stop_channel(bus):
    collector = Collector()

    def handler(name, data):
        if data == b'bad':
            raise RuntimeError("handler failed")
        collector(name, data)

    a = _channel(bus, handler)
    try:
        a.send(b'bad')
        a.send(b'good')
        assert collector.done.wait(5.0)
        assert collector.received == [(ChannelName.MC, b'good')]
    finally:
        a.stop()


def test_drop_filter(bus):
    collector = Collector()
    bus.drop_filter = lambda group, data: data.startswith(b'drop')
    a = _channel(bus, collector)
    try:
        a.send(b'drop me')
        a.send(b'keep me')
        assert collector.done.wait(5.0)
        assert collector.received == [(ChannelName.MC, b'keep me')]
    finally:
        a.stop()


def test_stopped_channel_leaves_group(bus):
    collector = Collector()
    a = _channel(bus, Collector())
    b = _channel(bus, collector)
    b.stop()
    try:
        a.send(b'hello')
        assert not collector.done.wait(0.2)
    finally:
        a.stop()
