"""Read-only state report of a peer."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List

from common.constants import BYTES_PER_KB

if TYPE_CHECKING:
    from peer.node import Peer


@dataclass
class ChunkReport:
    content_id: str
    chunk_index: int
    size_kb: float
    desired_degree: int
    perceived_degree: int


@dataclass
class FileReport:
    path: str
    content_id: str
    desired_degree: int
    # chunk index -> perceived degree
    chunks: Dict[int, int] = field(default_factory=dict)


@dataclass
class InfoReport:
    peer_id: int
    protocol_version: str
    max_kb: int
    used_kb: float
    backed_up_files: List[FileReport] = field(default_factory=list)
    stored_chunks: List[ChunkReport] = field(default_factory=list)
    pending_deletes: Dict[int, List[str]] = field(default_factory=dict)


def build_info(peer: 'Peer') -> InfoReport:
    """Snapshot the peer's backups, stored chunks and pending deletes."""
    store = peer.store

    files = []
    for record in store.file_records():
        perceived = {c.chunk_index: c.perceived_degree for c in store.chunks_of(record.content_id)}
        files.append(FileReport(
            path=record.path,
            content_id=record.content_id,
            desired_degree=record.replication_degree,
            chunks={index: perceived.get(index, 0) for index in range(record.total_chunks)}
        ))

    chunks = [
        ChunkReport(
            content_id=c.content_id,
            chunk_index=c.chunk_index,
            size_kb=c.local_size / BYTES_PER_KB,
            desired_degree=c.desired_degree,
            perceived_degree=c.perceived_degree
        )
        for c in store.stored_chunks()
    ]

    return InfoReport(
        peer_id=peer.peer_id,
        protocol_version=peer.config.protocol_version,
        max_kb=store.max_disk_kb,
        used_kb=store.used_space_kb(),
        backed_up_files=files,
        stored_chunks=chunks,
        pending_deletes={p: sorted(cids) for p, cids in sorted(store.pending_deletes().items())}
    )
