"""Manages physical chunk files on disk under storage/{peer_id}/{content_id}/{chunk_index}."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class ChunkStorage:
    """
    Chunk files of one peer.

    Files hold the plaintext chunk bytes. Writes are atomic (temp file + rename)
    so a crash never leaves a truncated chunk at the canonical path.
    """

    def __init__(self, root: Path):
        """
        Initialize storage.

        Args:
            root: Peer storage directory (storage/{peer_id})
        """
        self.root = Path(root)

    def ensure_directory(self) -> None:
        """Ensure storage directory exists."""
        self.root.mkdir(parents=True, exist_ok=True)

    def get_chunk_path(self, content_id: str, chunk_index: int) -> Path:
        """
        Get file path for a chunk.

        Args:
            content_id: File content identifier
            chunk_index: Chunk number

        Returns:
            Path object for chunk file
        """
        return self.root / content_id / str(chunk_index)

    def write_chunk(self, content_id: str, chunk_index: int, data: bytes) -> bool:
        """
        Write chunk data to disk unless it is already stored.

        Args:
            content_id: File content identifier
            chunk_index: Chunk number
            data: Plaintext chunk bytes

        Returns:
            True if the chunk was written, False if it already existed

        Raises:
            OSError: If write operation fails
        """
        filepath = self.get_chunk_path(content_id, chunk_index)
        if filepath.exists():
            return False

        filepath.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=filepath.parent, prefix=f".{chunk_index}.")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp_name, filepath)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return True

    def read_chunk(self, content_id: str, chunk_index: int) -> bytes:
        """
        Read entire chunk from disk.

        Raises:
            FileNotFoundError: If chunk does not exist
            OSError: If read operation fails
        """
        return self.get_chunk_path(content_id, chunk_index).read_bytes()

    def delete_chunk(self, content_id: str, chunk_index: int) -> bool:
        """
        Delete chunk file from disk.

        Returns:
            True if file was deleted, False if it didn't exist
        """
        filepath = self.get_chunk_path(content_id, chunk_index)
        if not filepath.exists():
            return False
        filepath.unlink()
        try:
            filepath.parent.rmdir()
        except OSError:
            pass
        return True

    def delete_content(self, content_id: str) -> int:
        """
        Delete every chunk of a file.

        Returns:
            Number of chunk files removed
        """
        folder = self.root / content_id
        if not folder.is_dir():
            return 0
        count = sum(1 for p in folder.iterdir() if p.is_file() and not p.name.startswith('.'))
        shutil.rmtree(folder, ignore_errors=True)
        return count

    def chunk_exists(self, content_id: str, chunk_index: int) -> bool:
        return self.get_chunk_path(content_id, chunk_index).is_file()

    def get_chunk_size(self, content_id: str, chunk_index: int) -> Optional[int]:
        """
        Get size of chunk file in bytes.

        Returns:
            Size in bytes, or None if chunk doesn't exist
        """
        filepath = self.get_chunk_path(content_id, chunk_index)
        if filepath.is_file():
            return filepath.stat().st_size
        return None

    def list_chunks(self) -> List[Tuple[str, int]]:
        """
        List every stored chunk.

        Returns:
            List of (content_id, chunk_index) tuples
        """
        if not self.root.exists():
            return []

        chunks = []
        for folder in self.root.iterdir():
            if not folder.is_dir():
                continue
            for filepath in folder.iterdir():
                if filepath.is_file() and filepath.name.isdigit():
                    chunks.append((folder.name, int(filepath.name)))
        return chunks
