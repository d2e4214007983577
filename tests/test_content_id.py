"""Tests for content identifiers and chunk geometry."""

import os

from common.content_id import (
    compute_content_id,
    exceeds_chunk_limit,
    is_valid_content_id,
    read_file_chunk,
    total_chunks_for_size,
)


def test_content_id_is_sha256_hex(sample_file):
    content_id = compute_content_id(sample_file)
    assert is_valid_content_id(content_id)


def test_content_id_depends_on_name_and_mtime(tmp_path):
    first = tmp_path / 'a.txt'
    second = tmp_path / 'b.txt'
    first.write_text('same')
    second.write_text('same')
    os.utime(first, (1_700_000_000, 1_700_000_000))
    os.utime(second, (1_700_000_000, 1_700_000_000))

    assert compute_content_id(first) != compute_content_id(second)

    before = compute_content_id(first)
    first.write_text('different content')
    os.utime(first, (1_700_000_000, 1_700_000_000))
    assert compute_content_id(first) == before

    os.utime(first, (1_700_000_100, 1_700_000_100))
    assert compute_content_id(first) != before


def test_total_chunks():
    assert total_chunks_for_size(0) == 1
    assert total_chunks_for_size(63_999) == 1
    assert total_chunks_for_size(64_000) == 2
    assert total_chunks_for_size(200_000) == 4


def test_chunk_limit():
    assert not exceeds_chunk_limit(64_000 * 1_000_000)
    assert exceeds_chunk_limit(64_000 * 1_000_001)


def test_read_file_chunk(large_file):
    data = large_file.read_bytes()
    assert read_file_chunk(large_file, 0) == data[:64_000]
    assert read_file_chunk(large_file, 3) == data[192_000:]
    assert len(read_file_chunk(large_file, 3)) == 8_000


def test_trailing_empty_chunk(tmp_path):
    path = tmp_path / 'exact.bin'
    path.write_bytes(b'x' * 64_000)
    assert total_chunks_for_size(64_000) == 2
    assert read_file_chunk(path, 1) == b''
