"""Content identifier and chunk geometry helpers."""

import hashlib
import re
from datetime import datetime, timezone
from pathlib import Path

from common.constants import CHUNK_SIZE_BYTES, CONTENT_ID_LENGTH, MAX_TOTAL_CHUNKS

CONTENT_ID_PATTERN = re.compile(rf'^[0-9a-f]{{{CONTENT_ID_LENGTH}}}$')


def compute_content_id(path: Path) -> str:
    """
    Compute the content identifier of a file.

    The identifier hashes the file name together with its last modification
    time, not the file bytes. Two backups of an unmodified file share an ID.

    Args:
        path: Path to an existing file

    Returns:
        Lowercase SHA-256 hex digest

    Raises:
        OSError: If the file cannot be stat'ed
    """
    path = Path(path)
    modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()
    return hashlib.sha256(f"{path.name}{modified}".encode('utf-8')).hexdigest()


def is_valid_content_id(value: str) -> bool:
    return bool(CONTENT_ID_PATTERN.match(value))


def total_chunks_for_size(size_bytes: int) -> int:
    """
    Number of chunks for a file of size_bytes.

    A file whose size is a multiple of the chunk size ends with an empty chunk,
    so the count is always size // CHUNK_SIZE_BYTES + 1.
    """
    return size_bytes // CHUNK_SIZE_BYTES + 1


def exceeds_chunk_limit(size_bytes: int) -> bool:
    return total_chunks_for_size(size_bytes) > MAX_TOTAL_CHUNKS


def read_file_chunk(path: Path, chunk_index: int) -> bytes:
    """
    Read one chunk of a file.

    Args:
        path: File to read
        chunk_index: Zero-based chunk number

    Returns:
        Up to CHUNK_SIZE_BYTES bytes (empty for a trailing empty chunk)
    """
    with open(path, 'rb') as f:
        f.seek(chunk_index * CHUNK_SIZE_BYTES)
        return f.read(CHUNK_SIZE_BYTES)
