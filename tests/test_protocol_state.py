"""Tests for protocol instances and the registry."""

import threading

import pytest

from common.types import FileRecord
from peer.protocol_state import ProtocolInstance, ProtocolKey, ProtocolKind, ProtocolRegistry

CID = 'ab' * 32


def _instance(kind=ProtocolKind.BACKUP, extra=None, **kwargs):
    return ProtocolInstance(ProtocolKey(1, CID, kind, extra), **kwargs)


def _later(delay, fn, *args):
    timer = threading.Timer(delay, fn, args)
    timer.start()
    return timer


class TestRegistry:

    def test_insert_if_absent(self):
        registry = ProtocolRegistry()
        first, inserted = registry.insert_if_absent(_instance())
        assert inserted

        second, inserted = registry.insert_if_absent(_instance())
        assert not inserted
        assert second is first
        assert len(registry) == 1

    def test_keys_differ_by_kind_and_extra(self):
        registry = ProtocolRegistry()
        registry.insert_if_absent(_instance(ProtocolKind.CHUNK_STOP, extra=0))
        registry.insert_if_absent(_instance(ProtocolKind.CHUNK_STOP, extra=1))
        registry.insert_if_absent(_instance(ProtocolKind.PUTCHUNK_STOP, extra=0))

        assert registry.count(ProtocolKind.CHUNK_STOP) == 2
        assert len(registry.instances(ProtocolKind.PUTCHUNK_STOP)) == 1

    def test_remove_only_matching_instance(self):
        registry = ProtocolRegistry()
        current, _ = registry.insert_if_absent(_instance())

        assert not registry.remove(current.key, _instance())
        assert registry.remove(current.key, current)
        assert registry.get(current.key) is None
        assert not registry.remove(current.key)

    def test_concurrent_inserts_elect_one_owner(self):
        registry = ProtocolRegistry()
        winners = []
        barrier = threading.Barrier(8)

        def contend():
            barrier.wait()
            _, inserted = registry.insert_if_absent(_instance(ProtocolKind.CHUNK_STOP, extra=3))
            if inserted:
                winners.append(True)

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1


class TestResponses:

    def test_distinct_responders(self):
        instance = _instance()
        assert instance.add_response(0, 2) == 1
        assert instance.add_response(0, 2) == 1
        assert instance.add_response(0, 3) == 2
        assert instance.responders(0) == {2, 3}
        assert instance.response_count(1) == 0

    def test_wait_for_responses_wakes_on_threshold(self):
        instance = _instance()
        _later(0.05, instance.add_response, 0, 2)
        _later(0.1, instance.add_response, 0, 3)
        assert instance.wait_for_responses(0, 2, timeout=5.0)

    def test_wait_for_responses_times_out(self):
        instance = _instance()
        instance.add_response(0, 2)
        assert not instance.wait_for_responses(0, 2, timeout=0.05)

    def test_wait_for_responders(self):
        instance = _instance(ProtocolKind.DELETE)
        _later(0.05, instance.add_response, 0, 4)
        _later(0.05, instance.add_response, 0, 2)
        assert instance.wait_for_responders(0, {2, 4}, timeout=5.0)
        assert not instance.wait_for_responders(0, {2, 5}, timeout=0.05)

    def test_cancel_wakes_waiters(self):
        instance = _instance()
        _later(0.05, instance.cancel)
        assert not instance.wait_for_responses(0, 1, timeout=5.0)
        assert instance.cancelled


class TestRestoredChunks:

    def test_add_and_pop(self):
        instance = _instance(ProtocolKind.RESTORE, total_chunks=3)
        assert instance.add_restored_chunk(1, b'b')
        assert instance.add_restored_chunk(0, b'a')
        assert not instance.add_restored_chunk(0, b'again')
        assert instance.missing_chunks([0, 1, 2]) == [2]
        assert instance.pop_chunks([0, 1]) == [b'a', b'b']
        assert instance.missing_chunks([0]) == [0]

    def test_out_of_range_chunk_ignored(self):
        instance = _instance(ProtocolKind.RESTORE, total_chunks=3)
        assert not instance.add_restored_chunk(3, b'x')

    def test_wait_for_chunks(self):
        instance = _instance(ProtocolKind.RESTORE, total_chunks=2)
        _later(0.05, instance.add_restored_chunk, 0, b'a')
        _later(0.1, instance.add_restored_chunk, 1, b'b')
        assert instance.wait_for_chunks([0, 1], timeout=5.0)

    def test_pop_missing_chunk_raises(self):
        instance = _instance(ProtocolKind.RESTORE, total_chunks=2)
        with pytest.raises(KeyError):
            instance.pop_chunks([0])


class TestFileDiscovery:

    def test_first_file_record_wins(self):
        instance = _instance(ProtocolKind.RETRIEVE)
        first = FileRecord('a.txt', 'a.txt', CID, 1, 2)
        assert instance.set_file_record(first)
        assert not instance.set_file_record(FileRecord('b.txt', 'b.txt', CID, 9, 9))
        assert instance.wait_for_file_record(0.01) == first

    def test_wait_for_file_record_times_out(self):
        assert _instance(ProtocolKind.RETRIEVE).wait_for_file_record(0.05) is None

    def test_reply_observed(self):
        instance = _instance(ProtocolKind.CHUNK_STOP, extra=0)
        assert not instance.reply_observed
        instance.mark_reply_observed()
        assert instance.reply_observed
