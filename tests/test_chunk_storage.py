"""Tests for on-disk chunk storage."""

import pytest

from peer.chunk_storage import ChunkStorage

CID = 'cd' * 32


@pytest.fixture
def storage(tmp_path):
    s = ChunkStorage(tmp_path / 'storage' / '1')
    s.ensure_directory()
    return s


def test_write_and_read(storage):
    assert storage.write_chunk(CID, 0, b'abc')
    assert storage.read_chunk(CID, 0) == b'abc'
    assert storage.get_chunk_path(CID, 0).name == '0'
    assert storage.get_chunk_size(CID, 0) == 3


def test_write_existing_chunk_is_noop(storage):
    storage.write_chunk(CID, 0, b'abc')
    assert not storage.write_chunk(CID, 0, b'other')
    assert storage.read_chunk(CID, 0) == b'abc'


def test_empty_chunk(storage):
    assert storage.write_chunk(CID, 4, b'')
    assert storage.chunk_exists(CID, 4)
    assert storage.get_chunk_size(CID, 4) == 0


def test_read_missing_chunk(storage):
    with pytest.raises(FileNotFoundError):
        storage.read_chunk(CID, 9)
    assert storage.get_chunk_size(CID, 9) is None


def test_delete_chunk(storage):
    storage.write_chunk(CID, 0, b'abc')
    assert storage.delete_chunk(CID, 0)
    assert not storage.chunk_exists(CID, 0)
    assert not storage.delete_chunk(CID, 0)


def test_delete_content(storage):
    for index in range(3):
        storage.write_chunk(CID, index, b'x')
    storage.write_chunk('ef' * 32, 0, b'y')

    assert storage.delete_content(CID) == 3
    assert storage.delete_content(CID) == 0
    assert storage.list_chunks() == [('ef' * 32, 0)]


def test_list_chunks_ignores_temp_files(storage):
    storage.write_chunk(CID, 1, b'x')
    (storage.root / CID / '.1.partial').write_bytes(b'junk')
    assert storage.list_chunks() == [(CID, 1)]
