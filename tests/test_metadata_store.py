"""Tests for the metadata store."""

import json
import threading

import pytest

from common.types import FileRecord
from peer.chunk_storage import ChunkStorage
from peer.metadata_store import MetadataStore

CID = 'ab' * 32
OTHER = 'cd' * 32


@pytest.fixture
def store(tmp_path):
    return MetadataStore(peer_id=1, snapshot_path=tmp_path / 'metadata' / '1.json')


def _file(content_id=CID, path='/data/report.pdf'):
    return FileRecord(path=path, name='report.pdf', content_id=content_id, total_chunks=4, replication_degree=2)


class TestChunkRecords:

    def test_putchunk_without_size_does_not_count_self(self, store):
        record = store.record_putchunk(CID, 0, 3)
        assert record.desired_degree == 3
        assert not record.is_stored_locally
        assert record.perceived == set()

    def test_putchunk_with_size_marks_local_copy(self, store):
        record = store.record_putchunk(CID, 0, 2, size=64_000)
        assert record.is_stored_locally
        assert record.perceived == {1}
        assert store.used_space_bytes() == 64_000

    def test_last_putchunk_degree_wins(self, store):
        store.record_putchunk(CID, 0, 2)
        store.record_putchunk(CID, 0, 5)
        assert store.get_chunk(CID, 0).desired_degree == 5

    def test_duplicate_stored_counts_once(self, store):
        store.record_putchunk(CID, 0, 2)
        store.record_stored(CID, 0, 2)
        store.record_stored(CID, 0, 2)
        store.record_stored(CID, 0, 3)
        assert store.get_chunk(CID, 0).perceived_degree == 2

    def test_returned_records_are_copies(self, store):
        store.record_stored(CID, 0, 2)
        record = store.get_chunk(CID, 0)
        record.perceived.add(99)
        assert store.get_chunk(CID, 0).perceived == {2}

    def test_removed_reports_under_replication_only_with_local_copy(self, store):
        store.record_putchunk(CID, 0, 2, size=10)
        store.record_stored(CID, 0, 2)
        assert store.record_removed(CID, 0, 2) == 2

        store.record_putchunk(OTHER, 0, 2)
        store.record_stored(OTHER, 0, 2)
        store.record_stored(OTHER, 0, 3)
        assert store.record_removed(OTHER, 0, 2) is None

    def test_removed_while_still_replicated(self, store):
        store.record_putchunk(CID, 0, 1, size=10)
        store.record_stored(CID, 0, 2)
        assert store.record_removed(CID, 0, 2) is None

    def test_removed_unknown_chunk(self, store):
        assert store.record_removed(CID, 0, 2) is None

    def test_mark_evicted(self, store):
        store.record_putchunk(CID, 0, 2, size=10)
        store.mark_evicted(CID, 0)
        record = store.get_chunk(CID, 0)
        assert not record.is_stored_locally
        assert 1 not in record.perceived
        assert store.used_space_bytes() == 0

    def test_record_delete_forgets_file(self, store):
        store.upsert_file_record(_file())
        store.record_putchunk(CID, 0, 2, size=10)
        store.record_putchunk(CID, 1, 2)
        assert store.record_delete(CID) == [0]
        assert store.chunks_of(CID) == []
        assert store.get_file_record(CID) is None

    def test_peers_holding(self, store):
        store.record_stored(CID, 0, 2)
        store.record_stored(CID, 1, 3)
        store.record_stored(OTHER, 0, 4)
        assert store.peers_holding(CID) == {2, 3}

    def test_capacity(self, store):
        store.max_disk_kb = 100
        store.record_putchunk(CID, 0, 1, size=64_000)
        assert store.has_room_for(36_000)
        assert not store.has_room_for(36_001)
        assert store.used_space_kb() == 64.0

    def test_concurrent_updates_do_not_lose_responders(self, store):
        def stored(peer_id):
            for index in range(50):
                store.record_stored(CID, index, peer_id)

        threads = [threading.Thread(target=stored, args=(p,)) for p in range(2, 10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r.perceived_degree == 8 for r in store.chunks_of(CID))
        assert len(store.chunks_of(CID)) == 50

    def test_concurrent_putchunks_keep_one_write(self, store):
        """Racing stores of one chunk leave degree and size from the same writer."""
        for index in range(200):
            barrier = threading.Barrier(2)

            def put(degree, size, index=index, barrier=barrier):
                barrier.wait()
                store.record_putchunk(CID, index, degree, size=size)

            threads = [
                threading.Thread(target=put, args=(2, 100)),
                threading.Thread(target=put, args=(3, 200)),
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            record = store.get_chunk(CID, index)
            assert (record.desired_degree, record.local_size) in {(2, 100), (3, 200)}

    def test_surplus_copies_count_as_room(self, store):
        store.max_disk_kb = 100
        store.record_putchunk(CID, 0, 1, size=64_000)
        store.record_stored(CID, 0, 2)
        store.record_putchunk(CID, 1, 2, size=30_000)

        assert store.surplus_bytes() == 64_000
        assert not store.has_room_for(10_000)
        assert store.has_room_for(10_000, counting_surplus=True)
        assert not store.has_room_for(70_001, counting_surplus=True)
        assert not store.is_over_cap()

        store.record_putchunk(CID, 2, 1, size=10_000)
        assert store.is_over_cap()


class TestFileRecordsAndPendingDeletes:

    def test_find_file_record_by_resolved_path(self, store, tmp_path):
        path = tmp_path / 'report.pdf'
        store.upsert_file_record(_file(path=str(path.resolve())))
        assert store.find_file_record(str(path)).content_id == CID
        assert store.find_file_record(str(tmp_path / 'other.pdf')) is None

    def test_pending_deletes(self, store):
        store.add_pending_deletes(CID, [2, 3])
        store.add_pending_deletes(OTHER, [3])
        assert store.pending_deletes_for(3) == {CID, OTHER}

        assert store.clear_pending_delete(3, CID)
        assert not store.clear_pending_delete(3, CID)
        assert store.clear_pending_delete(3, OTHER)
        assert store.pending_deletes() == {2: {CID}}


class TestPersistence:

    def test_snapshot_round_trip(self, store, tmp_path):
        store.max_disk_kb = 321
        store.upsert_file_record(_file())
        store.record_putchunk(CID, 0, 2, size=64_000)
        store.record_stored(CID, 0, 4)
        store.add_pending_deletes(OTHER, [5])
        store.save_to_disk()

        loaded = MetadataStore(peer_id=1, snapshot_path=store.snapshot_path)
        assert loaded.load_from_disk()
        assert loaded.max_disk_kb == 321
        assert loaded.get_file_record(CID) == _file()
        assert loaded.get_chunk(CID, 0).perceived == {1, 4}
        assert loaded.get_chunk(CID, 0).local_size == 64_000
        assert loaded.pending_deletes() == {5: {OTHER}}

    def test_snapshot_is_versioned_json(self, store):
        store.save_to_disk()
        data = json.loads(store.snapshot_path.read_text())
        assert data['version'] == 1
        assert data['peer_id'] == 1

    def test_missing_snapshot(self, store):
        assert not store.load_from_disk()

    def test_corrupt_snapshot_leaves_store_empty(self, store):
        store.snapshot_path.parent.mkdir(parents=True)
        store.snapshot_path.write_text('{"version": 99}')
        assert not store.load_from_disk()
        assert store.file_records() == []

    @pytest.mark.parametrize('snapshot', [
        {"version": 1, "files": [], "chunks": {}},
        {"version": 1, "files": {}, "chunks": ["abc"]},
        {"version": 1, "files": {}, "chunks": {"abc": []}},
        {"version": 1, "pending_deletes": "2"},
    ])
    def test_misshapen_snapshot_leaves_store_empty(self, store, snapshot):
        store.snapshot_path.parent.mkdir(parents=True)
        store.snapshot_path.write_text(json.dumps(snapshot))
        assert not store.load_from_disk()
        assert store.file_records() == []
        assert store.stored_chunks() == []

    def test_periodic_save(self, store):
        store.upsert_file_record(_file())
        store.start_periodic_save(0.05)
        try:
            deadline = threading.Event()
            deadline.wait(0.3)
        finally:
            store.stop_periodic_save()
        assert store.snapshot_path.exists()

    def test_reconcile_with_storage(self, store, tmp_path):
        storage = ChunkStorage(tmp_path / 'storage')
        storage.write_chunk(CID, 1, b'abc')
        store.record_putchunk(CID, 0, 2, size=10)

        assert store.reconcile_with_storage(storage) == 2
        assert not store.get_chunk(CID, 0).is_stored_locally
        adopted = store.get_chunk(CID, 1)
        assert adopted.local_size == 3
        assert adopted.desired_degree == 0
