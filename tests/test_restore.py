"""End-to-end RESTORE tests over the in-process bus."""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from common.exceptions import FileNotBackedUpError, RestoreError
from peer.protocol_state import ProtocolKind


def _drop_getchunk(group, data):
    return data.startswith(b'GETCHUNK')


def test_enhanced_restore_is_byte_identical(enhanced_cluster, large_file):
    peer = enhanced_cluster.peers[1]
    backup = peer.backup(str(large_file), 2)

    outcome = peer.restore(str(large_file))

    restored = Path(outcome.output_path)
    assert outcome.content_id == backup.content_id
    assert outcome.total_chunks == 4
    assert restored.parent == peer.config.restored_dir
    assert restored.name.endswith(' - large.bin')
    assert restored.read_bytes() == large_file.read_bytes()
    assert peer.registry.count(ProtocolKind.RESTORE) == 0


def test_enhanced_restore_uses_tcp(enhanced_cluster, large_file):
    """Chunk bodies travel over TCP, the restore channel only carries announcements."""
    bodies_on_mdr = []

    def spy(group, data):
        if data.startswith(b'CHUNK') and len(data) > 1000:
            bodies_on_mdr.append(data)
        return False

    peer = enhanced_cluster.peers[1]
    peer.backup(str(large_file), 2)
    enhanced_cluster.bus.drop_filter = spy

    outcome = peer.restore(str(large_file))
    assert Path(outcome.output_path).read_bytes() == large_file.read_bytes()
    assert bodies_on_mdr == []


def test_basic_restore_over_multicast(basic_cluster, large_file):
    peer = basic_cluster.peers[1]
    peer.backup(str(large_file), 2)

    outcome = peer.restore(str(large_file))
    assert Path(outcome.output_path).read_bytes() == large_file.read_bytes()


def test_repeated_restores_do_not_overwrite(enhanced_cluster, sample_file):
    peer = enhanced_cluster.peers[1]
    peer.backup(str(sample_file), 1)

    first = peer.restore(str(sample_file))
    second = peer.restore(str(sample_file))

    assert first.output_path != second.output_path
    assert Path(first.output_path).read_text() == Path(second.output_path).read_text()


def test_restore_on_another_peer_by_content_id(enhanced_cluster, large_file):
    """A peer without the file record discovers it with RETRIEVE/INFO."""
    backup = enhanced_cluster.peers[1].backup(str(large_file), 2)
    other = enhanced_cluster.peers[4]

    outcome = other.restore('/somewhere/else/large.bin', content_id=backup.content_id)

    restored = Path(outcome.output_path)
    assert restored.parent == other.config.restored_dir
    assert restored.name.endswith(' - large.bin')
    assert restored.read_bytes() == large_file.read_bytes()


def test_restore_on_another_peer_by_path(enhanced_cluster, large_file):
    enhanced_cluster.peers[1].backup(str(large_file), 2)

    outcome = enhanced_cluster.peers[4].restore(str(large_file))
    assert Path(outcome.output_path).read_bytes() == large_file.read_bytes()


def test_restore_unknown_file(enhanced_cluster, tmp_path):
    peer = enhanced_cluster.peers[1]
    with pytest.raises(FileNotBackedUpError):
        peer.restore(str(tmp_path / 'never-backed-up.txt'))


def test_retrieve_without_answer(enhanced_cluster, sample_file):
    peer = enhanced_cluster.peers[1]
    peer.config.base_timeout = 0.2
    with pytest.raises(FileNotBackedUpError):
        peer.restore(str(sample_file))


def test_restore_times_out_and_cleans_up(enhanced_cluster, large_file):
    peer = enhanced_cluster.peers[1]
    peer.backup(str(large_file), 2)
    peer.config.restore_chunk_timeout = 0.1
    enhanced_cluster.bus.drop_filter = _drop_getchunk

    with pytest.raises(RestoreError):
        peer.restore(str(large_file))

    assert list(peer.config.restored_dir.iterdir()) == []
    assert peer.registry.count(ProtocolKind.RESTORE) == 0


def test_cancel_restore(enhanced_cluster, large_file, wait_for):
    peer = enhanced_cluster.peers[1]
    backup = peer.backup(str(large_file), 2)
    enhanced_cluster.bus.drop_filter = _drop_getchunk

    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(peer.restore, str(large_file))
        assert wait_for(lambda: peer.cancel_restore(backup.content_id))
        with pytest.raises(RestoreError, match="cancelled"):
            future.result(timeout=10)

    assert not peer.cancel_restore(backup.content_id)
    assert list(peer.config.restored_dir.iterdir()) == []


def test_restore_from_own_stored_chunks(enhanced_cluster, large_file):
    """A peer holding chunks of someone else's file uses them directly."""
    backup = enhanced_cluster.peers[1].backup(str(large_file), 2)
    holder = enhanced_cluster.peers[2]

    outcome = holder.restore('/remote/large.bin', content_id=backup.content_id)
    assert Path(outcome.output_path).read_bytes() == large_file.read_bytes()
