"""DELETE: removal of a file's chunks from every peer, with pending obligations for absent peers."""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List

from common.content_id import compute_content_id
from common.exceptions import FileNotBackedUpError, OperationInProgressError
from common.protocol import Message
from common.types import ChannelName, MessageType
from peer.protocol_state import ProtocolInstance, ProtocolKind

if TYPE_CHECKING:
    from peer.node import Peer

logger = logging.getLogger(__name__)


@dataclass
class DeleteOutcome:
    content_id: str
    confirmed_peers: List[int] = field(default_factory=list)
    pending_peers: List[int] = field(default_factory=list)


def run_delete(peer: 'Peer', path: str) -> DeleteOutcome:
    """
    Delete a backed-up file from the network.

    The basic protocol fires DELETE a fixed number of times. The enhanced
    protocol waits for DELETED from every peer believed to hold a chunk and
    records the peers that never answered as pending deletes.

    Args:
        peer: Local peer
        path: Original path given to BACKUP

    Returns:
        DeleteOutcome listing confirmed and still pending peers

    Raises:
        FileNotBackedUpError: If the file is unknown
        OperationInProgressError: If the same file is already being deleted
    """
    content_id = _resolve_content_id(peer, path)
    expected = peer.store.peers_holding(content_id) - {peer.peer_id}

    removed = peer.storage.delete_content(content_id)
    if removed:
        logger.info(f"Removed {removed} local chunk(s) of {content_id[:12]}...")

    delete_message = peer.message(MessageType.DELETE, content_id=content_id)

    if not peer.config.is_enhanced:
        for attempt in range(peer.config.delete_attempts):
            if attempt:
                time.sleep(peer.config.consecutive_delay)
            peer.send(ChannelName.MC, delete_message)
        peer.store.record_delete(content_id)
        logger.info(f"Delete sent for {content_id[:12]}... (basic, unconfirmed)")
        return DeleteOutcome(content_id=content_id)

    instance = ProtocolInstance(peer.key(content_id, ProtocolKind.DELETE))
    _, inserted = peer.registry.insert_if_absent(instance)
    if not inserted:
        raise OperationInProgressError(f"Delete of {content_id[:12]}... already in progress")

    try:
        for attempt in range(peer.config.delete_attempts):
            peer.send(ChannelName.MC, delete_message)
            if not expected:
                break
            if instance.wait_for_responders(0, expected, peer.config.base_timeout * (2 ** attempt)):
                break
            logger.debug(
                f"Delete of {content_id[:12]}...: waiting on peer(s) "
                f"{sorted(expected - instance.responders(0))} (attempt {attempt + 1})"
            )
        confirmed = instance.responders(0) & expected
    finally:
        instance.complete()
        peer.registry.remove(instance.key, instance)

    missing = expected - confirmed
    for peer_id in confirmed:
        peer.store.clear_pending_delete(peer_id, content_id)
    if missing:
        peer.store.add_pending_deletes(content_id, missing)
        logger.warning(f"Delete of {content_id[:12]}... pending for peer(s) {sorted(missing)}")

    peer.store.record_delete(content_id)
    logger.info(f"Delete finished for {content_id[:12]}...: confirmed={sorted(confirmed)}")
    return DeleteOutcome(
        content_id=content_id,
        confirmed_peers=sorted(confirmed),
        pending_peers=sorted(missing)
    )


def _resolve_content_id(peer: 'Peer', path: str) -> str:
    record = peer.store.find_file_record(path)
    if record is not None:
        return record.content_id

    file_path = Path(path).expanduser()
    if file_path.is_file():
        content_id = compute_content_id(file_path)
        if peer.store.get_file_record(content_id) is not None or peer.store.chunks_of(content_id):
            return content_id

    raise FileNotBackedUpError(f"No backup known for {path}")


def handle_delete(peer: 'Peer', message: Message) -> None:
    """Drop every local chunk of the file and acknowledge under the enhanced protocol."""
    content_id = message.content_id
    removed = peer.storage.delete_content(content_id)
    peer.store.record_delete(content_id)
    if removed:
        logger.info(f"Deleted {removed} chunk(s) of {content_id[:12]}... on request of peer {message.sender_id}")

    if peer.is_enhanced_exchange(message):
        peer.send(ChannelName.MC, peer.message(MessageType.DELETED, content_id=content_id))


def handle_deleted(peer: 'Peer', message: Message) -> None:
    content_id = message.content_id
    instance = peer.registry.get(peer.key(content_id, ProtocolKind.DELETE))
    if instance is not None:
        instance.add_response(0, message.sender_id)
    if peer.store.clear_pending_delete(message.sender_id, content_id):
        logger.info(f"Pending delete of {content_id[:12]}... confirmed by peer {message.sender_id}")


def handle_started(peer: 'Peer', message: Message) -> None:
    """Replay pending deletes toward a peer that just came online."""
    if not peer.is_enhanced_exchange(message):
        return
    pending = sorted(peer.store.pending_deletes_for(message.sender_id))
    if not pending:
        return

    logger.info(f"Peer {message.sender_id} started, replaying {len(pending)} pending delete(s)")
    for position, content_id in enumerate(pending):
        peer.scheduler.schedule(
            position * peer.config.consecutive_delay,
            peer.send,
            ChannelName.MC,
            peer.message(MessageType.DELETE, content_id=content_id)
        )
