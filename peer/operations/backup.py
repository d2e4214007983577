"""BACKUP: chunked replication of a local file, and the PUTCHUNK/STORED responders."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from common.constants import MAX_REPLICATION_DEGREE, MIN_REPLICATION_DEGREE
from common.content_id import (
    compute_content_id,
    exceeds_chunk_limit,
    read_file_chunk,
    total_chunks_for_size,
)
from common.exceptions import (
    FileTooLargeError,
    InsufficientReplicationError,
    InvalidRequestError,
    OperationInProgressError,
    SourceFileNotFoundError,
)
from common.protocol import Message
from common.types import ChannelName, FileRecord, MessageType
from peer.operations.reclaim import reclaim_over_cap
from peer.protocol_state import ProtocolInstance, ProtocolKind

if TYPE_CHECKING:
    from peer.node import Peer

logger = logging.getLogger(__name__)


@dataclass
class BackupOutcome:
    content_id: str
    path: str
    total_chunks: int
    replication_degree: int


def run_backup(peer: 'Peer', path: str, replication_degree: int) -> BackupOutcome:
    """
    Back up a file with the given replication degree.

    Each chunk is replicated by its own worker on the peer's backup pool. A
    worker sends PUTCHUNK and waits base_timeout * 2^attempt for enough
    distinct STORED replies, retrying up to max_attempts times.

    Args:
        peer: Local peer
        path: File to back up
        replication_degree: Desired number of copies per chunk (1..9)

    Returns:
        BackupOutcome when every chunk reached the desired degree

    Raises:
        InvalidRequestError: If the degree is out of range
        SourceFileNotFoundError: If the file does not exist
        FileTooLargeError: If the file needs more chunks than addressable
        OperationInProgressError: If the same file is already being backed up
        InsufficientReplicationError: If some chunk stayed under-replicated
        OSError: If a chunk of the file cannot be read
    """
    if not MIN_REPLICATION_DEGREE <= replication_degree <= MAX_REPLICATION_DEGREE:
        raise InvalidRequestError(
            f"Replication degree must be between {MIN_REPLICATION_DEGREE} and {MAX_REPLICATION_DEGREE}"
        )

    file_path = Path(path).expanduser().resolve()
    if not file_path.is_file():
        raise SourceFileNotFoundError(f"File not found: {path}")

    size = file_path.stat().st_size
    if exceeds_chunk_limit(size):
        raise FileTooLargeError(f"File {file_path.name} ({size} bytes) exceeds the maximum chunk count")

    content_id = compute_content_id(file_path)
    total_chunks = total_chunks_for_size(size)

    instance = ProtocolInstance(
        peer.key(content_id, ProtocolKind.BACKUP),
        total_chunks=total_chunks,
        desired_degree=replication_degree
    )
    _, inserted = peer.registry.insert_if_absent(instance)
    if not inserted:
        raise OperationInProgressError(f"Backup of {file_path.name} already in progress")

    logger.info(
        f"Backup started: {file_path.name} id={content_id[:12]}... "
        f"chunks={total_chunks} degree={replication_degree}"
    )

    futures = [
        peer.backup_pool.submit(_replicate_chunk, peer, instance, file_path, index)
        for index in range(total_chunks)
    ]
    try:
        failed = [index for index, future in enumerate(futures) if not future.result()]
    except Exception:
        # Stop the remaining workers from sending.
        instance.cancel()
        for future in futures:
            future.cancel()
        raise
    finally:
        instance.complete()
        peer.registry.remove(instance.key, instance)

    peer.store.upsert_file_record(FileRecord(
        path=str(file_path),
        name=file_path.name,
        content_id=content_id,
        total_chunks=total_chunks,
        replication_degree=replication_degree,
    ))

    if failed:
        logger.warning(f"Backup of {file_path.name} under-replicated on chunk(s) {failed}")
        raise InsufficientReplicationError(content_id, failed, replication_degree)

    logger.info(f"Backup finished: {file_path.name} id={content_id[:12]}...")
    return BackupOutcome(
        content_id=content_id,
        path=str(file_path),
        total_chunks=total_chunks,
        replication_degree=replication_degree
    )


def _replicate_chunk(peer: 'Peer', instance: ProtocolInstance, file_path: Path, index: int) -> bool:
    degree = instance.desired_degree
    data = read_file_chunk(file_path, index)
    peer.store.record_putchunk(instance.content_id, index, degree)

    payload = peer.codec.build(peer.message(
        MessageType.PUTCHUNK,
        content_id=instance.content_id,
        chunk_index=index,
        replication_degree=degree,
        body=data
    ))

    for attempt in range(peer.config.max_attempts):
        if instance.cancelled:
            return False
        peer.send_raw(ChannelName.MDB, payload)
        timeout = peer.config.base_timeout * (2 ** attempt)
        if instance.wait_for_responses(index, degree, timeout):
            logger.debug(f"Chunk {index} of {instance.content_id[:12]}... reached degree {degree}")
            return True
        logger.debug(
            f"Chunk {index}: {instance.response_count(index)}/{degree} STORED "
            f"after {timeout:.2f}s (attempt {attempt + 1}/{peer.config.max_attempts})"
        )

    return False


def handle_putchunk(peer: 'Peer', message: Message) -> None:
    """
    React to another peer's PUTCHUNK: record the desired degree, cancel a
    pending self-heal for the chunk, and schedule storing after jitter.
    """
    content_id, index = message.content_id, message.chunk_index
    peer.store.record_putchunk(content_id, index, message.replication_degree)

    heal = peer.registry.get(peer.key(content_id, ProtocolKind.PUTCHUNK_STOP, index))
    if heal is not None:
        heal.mark_reply_observed()

    if peer.store.get_file_record(content_id) is not None:
        logger.debug(f"Not storing chunk {index} of own file {content_id[:12]}...")
        return

    peer.scheduler.schedule(peer.jitter(), store_chunk, peer, message)


def store_chunk(peer: 'Peer', message: Message) -> None:
    """Store a PUTCHUNK payload (unless suppressed) and announce STORED."""
    content_id, index, degree = message.content_id, message.chunk_index, message.replication_degree
    held = peer.storage.chunk_exists(content_id, index)

    if peer.is_enhanced_exchange(message):
        record = peer.store.get_chunk(content_id, index)
        if record is not None and record.perceived_degree >= degree:
            if held:
                _send_stored(peer, content_id, index)
            else:
                logger.debug(f"Chunk {index} of {content_id[:12]}... already at degree {degree}, not storing")
            return

    if not held:
        data = message.body
        if not peer.store.has_room_for(len(data), counting_surplus=True):
            logger.info(f"No room for chunk {index} of {content_id[:12]}... ({len(data)} bytes)")
            return
        try:
            peer.storage.write_chunk(content_id, index, data)
        except OSError as e:
            logger.error(f"Failed to write chunk {index} of {content_id[:12]}...: {e}")
            return
        logger.info(f"Stored chunk {index} of {content_id[:12]}... ({len(data)} bytes)")

    size = peer.storage.get_chunk_size(content_id, index)
    peer.store.record_putchunk(content_id, index, degree, size=size if size is not None else len(message.body))
    _send_stored(peer, content_id, index)

    if peer.store.is_over_cap():
        peer.scheduler.schedule(0.0, reclaim_over_cap, peer)


def _send_stored(peer: 'Peer', content_id: str, index: int) -> None:
    peer.send(ChannelName.MC, peer.message(MessageType.STORED, content_id=content_id, chunk_index=index))


def handle_stored(peer: 'Peer', message: Message) -> None:
    """Count a STORED towards perceived replication and any running backup."""
    content_id, index = message.content_id, message.chunk_index
    peer.store.record_stored(content_id, index, message.sender_id)

    instance = peer.registry.get(peer.key(content_id, ProtocolKind.BACKUP))
    if instance is not None:
        count = instance.add_response(index, message.sender_id)
        logger.debug(f"Chunk {index}: {count}/{instance.desired_degree} unique peers")
