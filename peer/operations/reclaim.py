"""RECLAIM: shrink local storage to a new cap, and self-heal chunks other peers dropped."""

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Tuple

from common.constants import BYTES_PER_KB
from common.exceptions import InvalidRequestError, OperationInProgressError
from common.protocol import Message
from common.types import ChannelName, ChunkRecord, MessageType
from peer.protocol_state import ProtocolInstance, ProtocolKind

if TYPE_CHECKING:
    from peer.node import Peer

logger = logging.getLogger(__name__)


@dataclass
class ReclaimOutcome:
    max_kb: int
    used_kb: float
    evicted: List[Tuple[str, int]] = field(default_factory=list)


def run_reclaim(peer: 'Peer', max_kb: int) -> ReclaimOutcome:
    """
    Set the storage cap and evict chunks until usage fits under it.

    Over-replicated chunks go first, largest surplus first; then any stored
    chunk, largest first. Every eviction is announced with a single REMOVED.

    Args:
        peer: Local peer
        max_kb: New cap in KB (1 KB = 1000 bytes)

    Returns:
        ReclaimOutcome with the evicted (content_id, chunk_index) pairs

    Raises:
        InvalidRequestError: If max_kb is negative
        OperationInProgressError: If another reclaim is running
    """
    if max_kb < 0:
        raise InvalidRequestError(f"Storage cap must not be negative, got {max_kb}")

    instance = ProtocolInstance(peer.key("", ProtocolKind.RECLAIM))
    _, inserted = peer.registry.insert_if_absent(instance)
    if not inserted:
        raise OperationInProgressError("Reclaim already in progress")

    try:
        peer.store.max_disk_kb = max_kb
        peer.store.save_to_disk()
        logger.info(f"Reclaim started: cap {max_kb} KB, using {peer.store.used_space_kb():.1f} KB")
        evicted = _evict_until_under_cap(peer)
    finally:
        peer.registry.remove(instance.key, instance)

    used_kb = peer.store.used_space_kb()
    logger.info(f"Reclaim finished: evicted {len(evicted)} chunk(s), using {used_kb:.1f} KB")
    return ReclaimOutcome(max_kb=max_kb, used_kb=used_kb, evicted=evicted)


def reclaim_over_cap(peer: 'Peer') -> None:
    """
    Evict chunks after a store pushed usage past the current cap.

    Runs the same passes as run_reclaim without changing the cap. Does
    nothing if usage already fits or another reclaim is running.
    """
    if not peer.store.is_over_cap():
        return

    instance = ProtocolInstance(peer.key("", ProtocolKind.RECLAIM))
    _, inserted = peer.registry.insert_if_absent(instance)
    if not inserted:
        return

    try:
        logger.info(
            f"Usage {peer.store.used_space_kb():.1f} KB over cap {peer.store.max_disk_kb} KB, reclaiming"
        )
        evicted = _evict_until_under_cap(peer)
    finally:
        peer.registry.remove(instance.key, instance)
    logger.info(f"Automatic reclaim evicted {len(evicted)} chunk(s), using {peer.store.used_space_kb():.1f} KB")


def _evict_until_under_cap(peer: 'Peer') -> List[Tuple[str, int]]:
    limit = peer.store.max_disk_kb * BYTES_PER_KB
    evicted: List[Tuple[str, int]] = []
    for candidates in (_over_replicated, _largest_first):
        for record in candidates(peer.store.stored_chunks()):
            if peer.store.used_space_bytes() <= limit:
                return evicted
            if _evict(peer, record):
                evicted.append((record.content_id, record.chunk_index))
    return evicted


def _over_replicated(records: List[ChunkRecord]) -> List[ChunkRecord]:
    surplus = [r for r in records if r.perceived_degree > r.desired_degree]
    return sorted(surplus, key=lambda r: (r.perceived_degree - r.desired_degree, r.local_size), reverse=True)


def _largest_first(records: List[ChunkRecord]) -> List[ChunkRecord]:
    return sorted(records, key=lambda r: r.local_size, reverse=True)


def _evict(peer: 'Peer', record: ChunkRecord) -> bool:
    content_id, index = record.content_id, record.chunk_index
    try:
        peer.storage.delete_chunk(content_id, index)
    except OSError as e:
        logger.error(f"Failed to evict chunk {index} of {content_id[:12]}...: {e}")
        return False

    peer.store.mark_evicted(content_id, index)
    peer.send(ChannelName.MC, peer.message(MessageType.REMOVED, content_id=content_id, chunk_index=index))
    logger.info(f"Evicted chunk {index} of {content_id[:12]}... ({record.local_size} bytes)")
    time.sleep(peer.config.reclaim_pacing)
    return True


def handle_removed(peer: 'Peer', message: Message) -> None:
    """Update the perceived degree and, if now under-replicated, schedule a self-heal PUTCHUNK."""
    content_id, index = message.content_id, message.chunk_index
    desired = peer.store.record_removed(content_id, index, message.sender_id)
    if desired is None:
        return

    pending = ProtocolInstance(peer.key(content_id, ProtocolKind.PUTCHUNK_STOP, index), desired_degree=desired)
    _, inserted = peer.registry.insert_if_absent(pending)
    if inserted:
        logger.debug(f"Chunk {index} of {content_id[:12]}... under-replicated, scheduling self-heal")
        peer.scheduler.schedule(peer.jitter(), _self_heal, peer, content_id, index, pending)


def _self_heal(peer: 'Peer', content_id: str, index: int, pending: ProtocolInstance) -> None:
    try:
        if pending.reply_observed:
            logger.debug(f"Self-heal of chunk {index} taken over by another peer")
            return
        record = peer.store.get_chunk(content_id, index)
        if record is None or not record.is_stored_locally or record.perceived_degree >= record.desired_degree:
            return
        try:
            data = peer.storage.read_chunk(content_id, index)
        except FileNotFoundError:
            return

        peer.send(ChannelName.MDB, peer.message(
            MessageType.PUTCHUNK,
            content_id=content_id,
            chunk_index=index,
            replication_degree=record.desired_degree,
            body=data
        ))
        logger.info(f"Self-heal PUTCHUNK sent for chunk {index} of {content_id[:12]}...")
    finally:
        peer.registry.remove(pending.key, pending)
