"""Chunk and file metadata: desired vs. perceived replication, file records, pending deletes."""

import json
import logging
import os
import threading
from dataclasses import asdict, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from common.constants import BYTES_PER_KB, DEFAULT_MAX_DISK_KB
from common.types import NOT_STORED, ChunkRecord, FileRecord
from peer.chunk_storage import ChunkStorage

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
LOCK_STRIPES = 64


def _copy(record: ChunkRecord) -> ChunkRecord:
    return replace(record, perceived=set(record.perceived))


def _section(data: dict, name: str) -> dict:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ValueError(f"Snapshot section '{name}' must be an object, got {type(value).__name__}")
    return value


class MetadataStore:
    """
    Thread-safe store of ChunkRecords, FileRecords and pending deletes.

    Chunk records are grouped by content ID and guarded by striped locks, so
    updates for one chunk are atomic without serializing unrelated files.
    Readers get copies, never live records.
    """

    def __init__(self, peer_id: int, snapshot_path: Path, max_disk_kb: int = DEFAULT_MAX_DISK_KB):
        """
        Initialize an empty store.

        Args:
            peer_id: ID of the owning peer
            snapshot_path: JSON file used by save_to_disk/load_from_disk
            max_disk_kb: Initial storage cap in KB
        """
        self.peer_id = peer_id
        self.snapshot_path = Path(snapshot_path)

        self._stripes = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._chunks: Dict[str, Dict[int, ChunkRecord]] = {}

        self._files_lock = threading.Lock()
        self._files: Dict[str, FileRecord] = {}

        self._pending_lock = threading.Lock()
        self._pending_deletes: Dict[int, Set[str]] = {}

        self._max_disk_kb = max_disk_kb

        self._file_lock = threading.Lock()
        self._save_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def _lock_for(self, content_id: str) -> threading.Lock:
        return self._stripes[hash(content_id) % LOCK_STRIPES]

    def _record(self, content_id: str, chunk_index: int) -> ChunkRecord:
        chunks = self._chunks.setdefault(content_id, {})
        record = chunks.get(chunk_index)
        if record is None:
            record = ChunkRecord(content_id=content_id, chunk_index=chunk_index)
            chunks[chunk_index] = record
        return record

    # Chunk records

    def record_putchunk(
        self,
        content_id: str,
        chunk_index: int,
        desired_degree: int,
        size: Optional[int] = None
    ) -> ChunkRecord:
        """
        Insert or update a chunk after seeing a PUTCHUNK for it.

        Args:
            content_id: File content identifier
            chunk_index: Chunk number
            desired_degree: Degree carried by the PUTCHUNK (last writer wins)
            size: Local size in bytes when this peer stored the chunk

        Returns:
            Copy of the updated record
        """
        with self._lock_for(content_id):
            record = self._record(content_id, chunk_index)
            record.desired_degree = desired_degree
            if size is not None:
                record.local_size = size
                record.perceived.add(self.peer_id)
            return _copy(record)

    def record_stored(self, content_id: str, chunk_index: int, peer_id: int) -> ChunkRecord:
        """
        Record that peer_id holds a copy of the chunk.

        Duplicate STORED messages from the same peer are idempotent.
        """
        with self._lock_for(content_id):
            record = self._record(content_id, chunk_index)
            record.perceived.add(peer_id)
            return _copy(record)

    def record_removed(self, content_id: str, chunk_index: int, peer_id: int) -> Optional[int]:
        """
        Record that peer_id dropped its copy of the chunk.

        Returns:
            The desired degree if the chunk is now under-replicated and this
            peer holds a local copy, None otherwise
        """
        with self._lock_for(content_id):
            record = self._chunks.get(content_id, {}).get(chunk_index)
            if record is None:
                return None
            record.perceived.discard(peer_id)
            if record.is_stored_locally and record.perceived_degree < record.desired_degree:
                return record.desired_degree
            return None

    def mark_evicted(self, content_id: str, chunk_index: int) -> None:
        """Mark a locally stored chunk as evicted by this peer."""
        with self._lock_for(content_id):
            record = self._chunks.get(content_id, {}).get(chunk_index)
            if record is None:
                return
            record.local_size = NOT_STORED
            record.perceived.discard(self.peer_id)

    def record_delete(self, content_id: str) -> List[int]:
        """
        Forget a file: its FileRecord and every ChunkRecord.

        Returns:
            Indices of chunks that were stored locally
        """
        with self._lock_for(content_id):
            chunks = self._chunks.pop(content_id, {})
        with self._files_lock:
            self._files.pop(content_id, None)
        return sorted(idx for idx, record in chunks.items() if record.is_stored_locally)

    def get_chunk(self, content_id: str, chunk_index: int) -> Optional[ChunkRecord]:
        with self._lock_for(content_id):
            record = self._chunks.get(content_id, {}).get(chunk_index)
            return _copy(record) if record is not None else None

    def chunks_of(self, content_id: str) -> List[ChunkRecord]:
        with self._lock_for(content_id):
            records = list(self._chunks.get(content_id, {}).values())
            return sorted((_copy(r) for r in records), key=lambda r: r.chunk_index)

    def stored_chunks(self) -> List[ChunkRecord]:
        """
        Get every chunk stored on this peer.

        Returns:
            Copies of records with a local size
        """
        stored = []
        for content_id in list(self._chunks.keys()):
            stored.extend(r for r in self.chunks_of(content_id) if r.is_stored_locally)
        return stored

    def peers_holding(self, content_id: str) -> Set[int]:
        """
        Get peers believed to hold any chunk of a file.

        Returns:
            Union of the perceived sets of every chunk of content_id
        """
        peers: Set[int] = set()
        for record in self.chunks_of(content_id):
            peers |= record.perceived
        return peers

    def used_space_bytes(self) -> int:
        return sum(r.local_size for r in self.stored_chunks())

    def used_space_kb(self) -> float:
        return self.used_space_bytes() / BYTES_PER_KB

    @property
    def max_disk_kb(self) -> int:
        return self._max_disk_kb

    @max_disk_kb.setter
    def max_disk_kb(self, value: int) -> None:
        self._max_disk_kb = value

    def surplus_bytes(self) -> int:
        """Bytes held locally in chunks whose perceived degree exceeds the desired one."""
        return sum(
            r.local_size for r in self.stored_chunks()
            if r.perceived_degree > r.desired_degree
        )

    def has_room_for(self, size: int, counting_surplus: bool = False) -> bool:
        """
        Check whether size more bytes fit under the cap.

        Args:
            size: Bytes to add
            counting_surplus: Treat over-replicated local chunks as free space,
                since a reclaim may evict them

        Returns:
            True if the chunk fits
        """
        used = self.used_space_bytes()
        if counting_surplus:
            used -= self.surplus_bytes()
        return used + size <= self._max_disk_kb * BYTES_PER_KB

    def is_over_cap(self) -> bool:
        return self.used_space_bytes() > self._max_disk_kb * BYTES_PER_KB

    # File records

    def upsert_file_record(self, record: FileRecord) -> None:
        with self._files_lock:
            self._files[record.content_id] = record

    def get_file_record(self, content_id: str) -> Optional[FileRecord]:
        with self._files_lock:
            record = self._files.get(content_id)
            return replace(record) if record is not None else None

    def find_file_record(self, path: str) -> Optional[FileRecord]:
        """
        Find the most recently stored backup of a local path.

        Args:
            path: Path as given to BACKUP (compared after resolving)

        Returns:
            FileRecord if one matches, None otherwise
        """
        wanted = str(Path(path).expanduser().resolve())
        with self._files_lock:
            for record in reversed(list(self._files.values())):
                if record.path == wanted:
                    return replace(record)
        return None

    def file_records(self) -> List[FileRecord]:
        with self._files_lock:
            return [replace(r) for r in self._files.values()]

    # Pending deletes

    def add_pending_deletes(self, content_id: str, peers: Iterable[int]) -> None:
        with self._pending_lock:
            for peer_id in peers:
                self._pending_deletes.setdefault(peer_id, set()).add(content_id)

    def clear_pending_delete(self, peer_id: int, content_id: str) -> bool:
        """
        Drop a delete obligation toward peer_id.

        Returns:
            True if an obligation was cleared
        """
        with self._pending_lock:
            pending = self._pending_deletes.get(peer_id)
            if not pending or content_id not in pending:
                return False
            pending.discard(content_id)
            if not pending:
                del self._pending_deletes[peer_id]
            return True

    def pending_deletes_for(self, peer_id: int) -> Set[str]:
        with self._pending_lock:
            return set(self._pending_deletes.get(peer_id, set()))

    def pending_deletes(self) -> Dict[int, Set[str]]:
        with self._pending_lock:
            return {peer_id: set(cids) for peer_id, cids in self._pending_deletes.items()}

    # Recovery

    def reconcile_with_storage(self, storage: ChunkStorage) -> int:
        """
        Align local sizes with the chunk files actually on disk.

        Records claiming a local copy whose file is gone are downgraded to
        system chunks. Files on disk without a record are adopted with a
        desired degree of 0, which makes them the first eviction candidates.

        Returns:
            Number of records changed
        """
        changed = 0
        on_disk = set(storage.list_chunks())

        for record in self.stored_chunks():
            if (record.content_id, record.chunk_index) not in on_disk:
                self.mark_evicted(record.content_id, record.chunk_index)
                changed += 1

        for content_id, chunk_index in on_disk:
            record = self.get_chunk(content_id, chunk_index)
            if record is not None and record.is_stored_locally:
                continue
            size = storage.get_chunk_size(content_id, chunk_index)
            if size is None:
                continue
            desired = record.desired_degree if record is not None else 0
            self.record_putchunk(content_id, chunk_index, desired, size=size)
            changed += 1

        if changed:
            logger.info(f"Reconciled {changed} chunk record(s) with storage")
        return changed

    # Persistence

    def to_snapshot(self) -> dict:
        chunks = {}
        for content_id in list(self._chunks.keys()):
            records = self.chunks_of(content_id)
            if records:
                chunks[content_id] = {
                    str(r.chunk_index): {
                        'desired_degree': r.desired_degree,
                        'perceived': sorted(r.perceived),
                        'local_size': r.local_size,
                    }
                    for r in records
                }

        return {
            'version': SNAPSHOT_VERSION,
            'peer_id': self.peer_id,
            'max_disk_kb': self._max_disk_kb,
            'files': {r.content_id: asdict(r) for r in self.file_records()},
            'chunks': chunks,
            'pending_deletes': {
                str(peer_id): sorted(cids) for peer_id, cids in self.pending_deletes().items()
            },
        }

    def load_snapshot(self, data: dict) -> None:
        """
        Replace the store contents with a snapshot.

        Raises:
            ValueError: If the snapshot is not a supported version or a section
                is not a JSON object
            KeyError, TypeError: If a record is malformed
        """
        if not isinstance(data, dict) or data.get('version') != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported metadata snapshot version: {data.get('version') if isinstance(data, dict) else None}")

        files = {cid: FileRecord(**entry) for cid, entry in _section(data, 'files').items()}
        chunks: Dict[str, Dict[int, ChunkRecord]] = {}
        for content_id, entries in _section(data, 'chunks').items():
            chunks[content_id] = {
                int(idx): ChunkRecord(
                    content_id=content_id,
                    chunk_index=int(idx),
                    desired_degree=int(entry['desired_degree']),
                    perceived={int(p) for p in entry['perceived']},
                    local_size=int(entry['local_size']),
                )
                for idx, entry in entries.items()
            }
        pending = {
            int(peer_id): set(cids) for peer_id, cids in _section(data, 'pending_deletes').items()
        }

        for lock in self._stripes:
            lock.acquire()
        try:
            self._chunks = chunks
        finally:
            for lock in self._stripes:
                lock.release()
        with self._files_lock:
            self._files = files
        with self._pending_lock:
            self._pending_deletes = pending
        self._max_disk_kb = int(data.get('max_disk_kb', self._max_disk_kb))

    def save_to_disk(self, path: Optional[Path] = None) -> None:
        """
        Persist the store to a JSON file atomically.

        Args:
            path: Target file (default: snapshot_path)

        Raises:
            OSError: If write operation fails
        """
        path = Path(path) if path is not None else self.snapshot_path
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.to_snapshot()

        with self._file_lock:
            tmp_path = path.with_suffix(path.suffix + '.tmp')
            with open(tmp_path, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)

        logger.debug(
            f"Saved metadata snapshot: {len(data['files'])} file(s), {len(data['chunks'])} content id(s)"
        )

    def load_from_disk(self, path: Optional[Path] = None) -> bool:
        """
        Load the store from a JSON file.

        A missing or unreadable snapshot leaves the store empty.

        Args:
            path: Source file (default: snapshot_path)

        Returns:
            True if a snapshot was loaded, False otherwise
        """
        path = Path(path) if path is not None else self.snapshot_path
        if not path.exists():
            logger.info(f"No metadata snapshot at {path}, starting with empty store")
            return False

        try:
            with self._file_lock:
                with open(path, 'r') as f:
                    data = json.load(f)
            self.load_snapshot(data)
        except (OSError, json.JSONDecodeError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load metadata snapshot from {path}: {e}, starting with empty store")
            return False

        logger.info(
            f"Loaded metadata snapshot from {path} "
            f"({len(self._files)} file(s), {len(self._chunks)} content id(s))"
        )
        return True

    def start_periodic_save(self, interval: float) -> None:
        """
        Start background thread that saves the store every interval seconds.

        Thread is daemon and will be started only once (subsequent calls are no-op).
        """
        if self._save_thread is not None and self._save_thread.is_alive():
            return

        self._stop_event.clear()
        self._save_thread = threading.Thread(
            target=self._save_loop,
            args=(interval,),
            daemon=True,
            name=f"MetadataSave-{self.peer_id}"
        )
        self._save_thread.start()
        logger.info(f"Metadata periodic save started (every {interval}s)")

    def stop_periodic_save(self) -> None:
        self._stop_event.set()
        if self._save_thread and self._save_thread.is_alive():
            self._save_thread.join(timeout=5.0)

    def _save_loop(self, interval: float) -> None:
        while not self._stop_event.wait(timeout=interval):
            try:
                self.save_to_disk()
            except OSError as e:
                logger.error(f"Error saving metadata snapshot: {e}", exc_info=True)
