"""RESTORE: windowed chunk retrieval, file discovery (RETRIEVE/INFO) and the GETCHUNK/CHUNK responders."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from common.content_id import compute_content_id, total_chunks_for_size
from common.exceptions import FileNotBackedUpError, OperationInProgressError, RestoreError
from common.protocol import Message
from common.types import ChannelName, FileRecord, MessageType
from peer.protocol_state import ProtocolInstance, ProtocolKind, remaining
from peer.restore_server import RestoreServer, send_chunk_over_tcp

if TYPE_CHECKING:
    from peer.node import Peer

logger = logging.getLogger(__name__)


@dataclass
class RestoreOutcome:
    content_id: str
    output_path: str
    total_chunks: int


def run_restore(peer: 'Peer', path: str, content_id: Optional[str] = None) -> RestoreOutcome:
    """
    Rebuild a backed-up file from chunks held by other peers.

    Args:
        peer: Local peer
        path: Original path given to BACKUP
        content_id: Content ID to ask for when neither a local record nor the
            original file is available

    Returns:
        RestoreOutcome with the path of the restored copy

    Raises:
        FileNotBackedUpError: If no peer knows the file
        OperationInProgressError: If the same file is already being restored
        RestoreError: If chunks could not be collected or the restore was cancelled
    """
    record = _resolve_file_record(peer, path, content_id)

    instance = ProtocolInstance(
        peer.key(record.content_id, ProtocolKind.RESTORE),
        total_chunks=record.total_chunks,
        desired_degree=record.replication_degree
    )
    _, inserted = peer.registry.insert_if_absent(instance)
    if not inserted:
        raise OperationInProgressError(f"Restore of {record.name} already in progress")

    server = None
    output_path = _output_path(peer, record.name)
    logger.info(
        f"Restore started: {record.name} id={record.content_id[:12]}... "
        f"chunks={record.total_chunks} -> {output_path}"
    )

    try:
        callback = None
        if peer.config.is_enhanced and peer.registry.count(ProtocolKind.RESTORE) <= peer.config.max_restores:
            server = RestoreServer(
                peer.codec,
                record.content_id,
                instance.add_restored_chunk,
                advertise_host=peer.config.resolve_advertise_host(),
                max_connections=peer.config.max_restores
            )
            try:
                callback = server.start()
            except OSError as e:
                logger.warning(f"Restore server unavailable, using multicast only: {e}")
                server = None

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'wb') as out:
            for start in range(0, record.total_chunks, peer.config.restore_window):
                indices = list(range(start, min(start + peer.config.restore_window, record.total_chunks)))
                _collect_window(peer, instance, indices, callback)
                for data in instance.pop_chunks(indices):
                    out.write(data)
    except BaseException:
        output_path.unlink(missing_ok=True)
        raise
    finally:
        if server is not None:
            server.stop()
        instance.complete()
        peer.registry.remove(instance.key, instance)

    logger.info(f"Restore finished: {record.name} -> {output_path}")
    return RestoreOutcome(
        content_id=record.content_id,
        output_path=str(output_path),
        total_chunks=record.total_chunks
    )


def _resolve_file_record(peer: 'Peer', path: str, content_id: Optional[str]) -> FileRecord:
    record = peer.store.find_file_record(path)
    if record is not None:
        return record

    file_path = Path(path).expanduser()
    estimated_chunks = 1
    if file_path.is_file():
        content_id = compute_content_id(file_path)
        estimated_chunks = total_chunks_for_size(file_path.stat().st_size)
        record = peer.store.get_file_record(content_id)
        if record is not None:
            return record

    if content_id is None:
        raise FileNotBackedUpError(f"No backup known for {path}")

    return _retrieve(peer, content_id, estimated_chunks, path)


def _retrieve(peer: 'Peer', content_id: str, estimated_chunks: int, path: str) -> FileRecord:
    """Ask other peers for the FileRecord of content_id."""
    instance = ProtocolInstance(peer.key(content_id, ProtocolKind.RETRIEVE))
    instance, _ = peer.registry.insert_if_absent(instance)

    timeout = max(peer.config.base_timeout, estimated_chunks * peer.config.restore_chunk_timeout)
    timeout += peer.config.jitter_max
    logger.info(f"Retrieving file info for {content_id[:12]}... (timeout {timeout:.2f}s)")

    try:
        peer.send(ChannelName.MC, peer.message(MessageType.RETRIEVE, content_id=content_id))
        record = instance.wait_for_file_record(timeout)
    finally:
        peer.registry.remove(instance.key, instance)

    if record is None:
        raise FileNotBackedUpError(f"No peer answered for {path}")
    return record


def _output_path(peer: 'Peer', name: str) -> Path:
    stamp = datetime.now().strftime('%Y%m%d-%H%M%S')
    base_name = Path(name).name
    candidate = peer.config.restored_dir / f"{stamp} - {base_name}"
    counter = 1
    while candidate.exists():
        candidate = peer.config.restored_dir / f"{stamp} - ({counter}) {base_name}"
        counter += 1
    return candidate


def _collect_window(peer: 'Peer', instance: ProtocolInstance, indices: List[int], callback: Optional[str]) -> None:
    config = peer.config
    deadline = time.monotonic() + len(indices) * config.restore_chunk_timeout * config.max_attempts

    for index in indices:
        if peer.storage.chunk_exists(instance.content_id, index):
            instance.add_restored_chunk(index, peer.storage.read_chunk(instance.content_id, index))
    _request_chunks(peer, instance, instance.missing_chunks(indices), callback)

    while not instance.wait_for_chunks(indices, min(config.base_timeout, remaining(deadline))):
        if instance.cancelled:
            raise RestoreError(f"Restore of {instance.content_id[:12]}... cancelled")
        missing = instance.missing_chunks(indices)
        if remaining(deadline) <= 0:
            raise RestoreError(f"Timed out waiting for chunk(s) {missing} of {instance.content_id[:12]}...")
        logger.debug(f"Re-requesting chunk(s) {missing}")
        _request_chunks(peer, instance, missing, callback)

    if instance.cancelled:
        raise RestoreError(f"Restore of {instance.content_id[:12]}... cancelled")


def _request_chunks(peer: 'Peer', instance: ProtocolInstance, indices: List[int], callback: Optional[str]) -> None:
    for position, index in enumerate(indices):
        if position and instance.cancel_event.wait(peer.config.consecutive_delay):
            return
        peer.send(ChannelName.MC, peer.message(
            MessageType.GETCHUNK,
            content_id=instance.content_id,
            chunk_index=index,
            callback=callback
        ))


def handle_getchunk(peer: 'Peer', message: Message) -> None:
    """Answer a GETCHUNK for a locally stored chunk after jitter, unless another peer answers first."""
    content_id, index = message.content_id, message.chunk_index
    if not peer.storage.chunk_exists(content_id, index):
        return

    pending = ProtocolInstance(peer.key(content_id, ProtocolKind.CHUNK_STOP, index))
    _, inserted = peer.registry.insert_if_absent(pending)
    if not inserted:
        return

    peer.scheduler.schedule(peer.jitter(), _send_chunk, peer, message, pending)


def _send_chunk(peer: 'Peer', request: Message, pending: ProtocolInstance) -> None:
    content_id, index = request.content_id, request.chunk_index
    try:
        if pending.reply_observed:
            logger.debug(f"Chunk {index} of {content_id[:12]}... already sent by another peer")
            return
        try:
            data = peer.storage.read_chunk(content_id, index)
        except FileNotFoundError:
            return

        if request.callback is not None and peer.is_enhanced_exchange(request):
            reply = peer.message(MessageType.CHUNK, content_id=content_id, chunk_index=index, body=data)
            try:
                send_chunk_over_tcp(request.callback, peer.codec.build(reply), peer.config.base_timeout)
            except (OSError, ValueError) as e:
                logger.warning(f"TCP delivery to {request.callback} failed, falling back to multicast: {e}")
            else:
                peer.send(ChannelName.MDR, peer.message(MessageType.CHUNK, content_id=content_id, chunk_index=index))
                return

        peer.send(ChannelName.MDR, peer.message(
            MessageType.CHUNK, content_id=content_id, chunk_index=index, body=data
        ))
    finally:
        peer.registry.remove(pending.key, pending)


def handle_chunk(peer: 'Peer', message: Message) -> None:
    content_id, index = message.content_id, message.chunk_index
    pending = peer.registry.get(peer.key(content_id, ProtocolKind.CHUNK_STOP, index))
    if pending is not None:
        pending.mark_reply_observed()

    if message.body is None:
        return
    instance = peer.registry.get(peer.key(content_id, ProtocolKind.RESTORE))
    if instance is not None and instance.add_restored_chunk(index, message.body):
        logger.debug(f"Received chunk {index} of {content_id[:12]}... from peer {message.sender_id}")


def handle_retrieve(peer: 'Peer', message: Message) -> None:
    """Answer RETRIEVE with INFO when this peer backed up the file."""
    content_id = message.content_id
    if peer.store.get_file_record(content_id) is None:
        return

    pending = ProtocolInstance(peer.key(content_id, ProtocolKind.INFO_STOP))
    _, inserted = peer.registry.insert_if_absent(pending)
    if inserted:
        peer.scheduler.schedule(peer.jitter(), _send_info, peer, content_id, pending)


def _send_info(peer: 'Peer', content_id: str, pending: ProtocolInstance) -> None:
    try:
        record = peer.store.get_file_record(content_id)
        if pending.reply_observed or record is None:
            return
        peer.send(ChannelName.MC, peer.message(
            MessageType.INFO,
            content_id=content_id,
            total_chunks=record.total_chunks,
            replication_degree=record.replication_degree,
            body=record.name.encode('utf-8')
        ))
    finally:
        peer.registry.remove(pending.key, pending)


def handle_info(peer: 'Peer', message: Message) -> None:
    content_id = message.content_id
    pending = peer.registry.get(peer.key(content_id, ProtocolKind.INFO_STOP))
    if pending is not None:
        pending.mark_reply_observed()

    instance = peer.registry.get(peer.key(content_id, ProtocolKind.RETRIEVE))
    if instance is None:
        return
    try:
        name = message.body.decode('utf-8')
    except UnicodeDecodeError:
        logger.debug(f"Ignoring INFO with undecodable name from peer {message.sender_id}")
        return
    instance.set_file_record(FileRecord(
        path=name,
        name=name,
        content_id=content_id,
        total_chunks=message.total_chunks,
        replication_degree=message.replication_degree
    ))
