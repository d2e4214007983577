"""Shared data type definitions (MessageType, FileRecord, ChunkRecord)."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Set


NOT_STORED: int = -1


class MessageType(str, Enum):
    """Every message kind understood on the wire."""
    PUTCHUNK = "PUTCHUNK"
    STORED = "STORED"
    DELETE = "DELETE"
    DELETED = "DELETED"
    GETCHUNK = "GETCHUNK"
    CHUNK = "CHUNK"
    REMOVED = "REMOVED"
    STARTED = "STARTED"
    RETRIEVE = "RETRIEVE"
    INFO = "INFO"


class ChannelName(str, Enum):
    """Logical multicast channels."""
    MC = "MC"
    MDB = "MDB"
    MDR = "MDR"


@dataclass
class FileRecord:
    """
    A file this peer initiated a backup for.
    """
    path: str
    name: str
    content_id: str
    total_chunks: int
    replication_degree: int


@dataclass
class ChunkRecord:
    """
    Knowledge about one chunk of a backed up file.

    Attributes:
        content_id: Identifier of the owning file
        chunk_index: Zero-based chunk sequence number
        desired_degree: Last replication degree seen in a PUTCHUNK
        perceived: Peer IDs known to hold a copy
        local_size: Bytes stored on this peer, or NOT_STORED
    """
    content_id: str
    chunk_index: int
    desired_degree: int = 0
    perceived: Set[int] = field(default_factory=set)
    local_size: int = NOT_STORED

    @property
    def is_stored_locally(self) -> bool:
        return self.local_size >= 0

    @property
    def perceived_degree(self) -> int:
        return len(self.perceived)
