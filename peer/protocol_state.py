"""Transient per-operation state and the shared registry of running protocol instances."""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from common.types import FileRecord

logger = logging.getLogger(__name__)


class ProtocolKind(str, Enum):
    """Kinds of registry entries: running operations and reply dedupe keys."""
    BACKUP = "BACKUP"
    RESTORE = "RESTORE"
    DELETE = "DELETE"
    RECLAIM = "RECLAIM"
    RETRIEVE = "RETRIEVE"
    CHUNK_STOP = "CHUNK_STOP"
    PUTCHUNK_STOP = "PUTCHUNK_STOP"
    INFO_STOP = "INFO_STOP"


@dataclass(frozen=True)
class ProtocolKey:
    """
    Composite registry key.

    Attributes:
        peer_id: Local peer owning the entry
        content_id: File content identifier
        kind: Entry kind
        extra: Disambiguator, e.g. the chunk index of a dedupe key
    """
    peer_id: int
    content_id: str
    kind: ProtocolKind
    extra: Optional[int] = None


class ProtocolInstance:
    """
    Mutable state of one running operation or one pending reply.

    Every mutation notifies a condition variable, so the owning operation
    blocks until its threshold is met instead of polling.
    """

    def __init__(self, key: ProtocolKey, total_chunks: int = 0, desired_degree: int = 0):
        self.key = key
        self.total_chunks = total_chunks
        self.desired_degree = desired_degree
        self.cancel_event = threading.Event()
        self.completed = False

        self._condition = threading.Condition()
        self._responses: Dict[int, Set[int]] = {}
        self._restored: Dict[int, bytes] = {}
        self._reply_observed = False
        self._file_record: Optional[FileRecord] = None

    @property
    def kind(self) -> ProtocolKind:
        return self.key.kind

    @property
    def content_id(self) -> str:
        return self.key.content_id

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()
        with self._condition:
            self._condition.notify_all()

    def complete(self) -> None:
        with self._condition:
            self.completed = True
            self._condition.notify_all()

    # Acknowledgements (STORED, DELETED)

    def add_response(self, index: int, peer_id: int) -> int:
        """
        Record an acknowledgement from peer_id.

        Args:
            index: Chunk index (0 for whole-file acknowledgements)
            peer_id: Responding peer

        Returns:
            Number of distinct responders for index
        """
        with self._condition:
            responders = self._responses.setdefault(index, set())
            responders.add(peer_id)
            self._condition.notify_all()
            return len(responders)

    def responders(self, index: int = 0) -> Set[int]:
        with self._condition:
            return set(self._responses.get(index, set()))

    def response_count(self, index: int = 0) -> int:
        with self._condition:
            return len(self._responses.get(index, set()))

    def wait_for_responses(self, index: int, threshold: int, timeout: float) -> bool:
        """
        Block until index has threshold distinct responders.

        Returns:
            True if the threshold was reached, False on timeout or cancellation
        """
        def reached() -> bool:
            return len(self._responses.get(index, ())) >= threshold or self.cancelled

        with self._condition:
            self._condition.wait_for(reached, timeout=timeout)
            return len(self._responses.get(index, ())) >= threshold

    def wait_for_responders(self, index: int, expected: Set[int], timeout: float) -> bool:
        """
        Block until every peer of expected has responded for index.

        Returns:
            True if all responded, False on timeout or cancellation
        """
        def covered() -> bool:
            return expected <= self._responses.get(index, set()) or self.cancelled

        with self._condition:
            self._condition.wait_for(covered, timeout=timeout)
            return expected <= self._responses.get(index, set())

    # Restored chunks (CHUNK)

    def add_restored_chunk(self, index: int, data: bytes) -> bool:
        """
        Store the payload of a CHUNK for this restore.

        Returns:
            True if the chunk was new, False for duplicates and out-of-range indices
        """
        if self.total_chunks and not 0 <= index < self.total_chunks:
            return False
        with self._condition:
            if index in self._restored:
                return False
            self._restored[index] = data
            self._condition.notify_all()
            return True

    def missing_chunks(self, indices: Iterable[int]) -> List[int]:
        with self._condition:
            return [i for i in indices if i not in self._restored]

    def wait_for_chunks(self, indices: List[int], timeout: float) -> bool:
        """
        Block until every index has been restored.

        Returns:
            True if all chunks are present, False on timeout or cancellation
        """
        def arrived() -> bool:
            return all(i in self._restored for i in indices) or self.cancelled

        with self._condition:
            self._condition.wait_for(arrived, timeout=timeout)
            return all(i in self._restored for i in indices)

    def pop_chunks(self, indices: List[int]) -> List[bytes]:
        """
        Remove and return restored chunks in index order.

        Raises:
            KeyError: If an index has not been restored
        """
        with self._condition:
            return [self._restored.pop(i) for i in indices]

    # Reply dedupe

    def mark_reply_observed(self) -> None:
        with self._condition:
            self._reply_observed = True

    @property
    def reply_observed(self) -> bool:
        with self._condition:
            return self._reply_observed

    # File discovery (RETRIEVE/INFO)

    def set_file_record(self, record: FileRecord) -> bool:
        with self._condition:
            if self._file_record is not None:
                return False
            self._file_record = record
            self._condition.notify_all()
            return True

    def wait_for_file_record(self, timeout: float) -> Optional[FileRecord]:
        with self._condition:
            self._condition.wait_for(
                lambda: self._file_record is not None or self.cancelled,
                timeout=timeout
            )
            return self._file_record


class ProtocolRegistry:
    """
    Concurrent map of ProtocolKey to ProtocolInstance.

    The lock only guards single map operations; operations run outside it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._instances: Dict[ProtocolKey, ProtocolInstance] = {}

    def insert_if_absent(self, instance: ProtocolInstance) -> Tuple[ProtocolInstance, bool]:
        """
        Register instance unless its key is taken.

        Returns:
            (registered instance, True if this call inserted it)
        """
        with self._lock:
            existing = self._instances.get(instance.key)
            if existing is not None:
                return existing, False
            self._instances[instance.key] = instance
            return instance, True

    def get(self, key: ProtocolKey) -> Optional[ProtocolInstance]:
        with self._lock:
            return self._instances.get(key)

    def remove(self, key: ProtocolKey, instance: Optional[ProtocolInstance] = None) -> bool:
        """
        Unregister a key.

        Args:
            key: Key to remove
            instance: When given, remove only if this exact instance is registered

        Returns:
            True if an entry was removed
        """
        with self._lock:
            current = self._instances.get(key)
            if current is None or (instance is not None and current is not instance):
                return False
            del self._instances[key]
            return True

    def count(self, kind: ProtocolKind) -> int:
        with self._lock:
            return sum(1 for key in self._instances if key.kind is kind)

    def instances(self, kind: Optional[ProtocolKind] = None) -> List[ProtocolInstance]:
        with self._lock:
            return [i for k, i in self._instances.items() if kind is None or k.kind is kind]

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)


def remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())
