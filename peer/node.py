"""Peer context: owns the channels, stores and pools, and exposes the operation front door."""

import logging
import random
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional

from common.constants import ENCRYPTION_KEY_ALIAS, MAC_KEY_ALIAS
from common.protocol import Message, WireCodec
from common.security import KeyProvider
from common.types import ChannelName, MessageType
from peer import operations
from peer.channel import ChannelFactory, ServiceChannel, multicast_channel_factory
from peer.chunk_storage import ChunkStorage
from peer.config import PeerConfig
from peer.dispatcher import Dispatcher
from peer.metadata_store import MetadataStore
from peer.protocol_state import ProtocolKey, ProtocolKind, ProtocolRegistry
from peer.scheduler import Scheduler

logger = logging.getLogger(__name__)


class Peer:
    """
    One backup peer.

    Every component that protocol handlers need hangs off this object, so
    handlers take the peer as their first argument instead of reaching for
    module globals.
    """

    def __init__(
        self,
        config: PeerConfig,
        key_provider: KeyProvider,
        channel_factory: Optional[ChannelFactory] = None
    ):
        """
        Initialize peer.

        Args:
            config: Peer settings
            key_provider: Source of the MAC and encryption keys
            channel_factory: Builds the three channels (multicast sockets by default)
        """
        self.config = config
        self.peer_id = config.peer_id
        self.key_provider = key_provider
        self.codec = WireCodec(key_provider, strict=config.strict_parsing)
        self.storage = ChunkStorage(config.storage_dir)
        self.store = MetadataStore(config.peer_id, config.metadata_path)
        self.registry = ProtocolRegistry()
        self.scheduler = Scheduler(config.scheduler_workers, name=f"peer{config.peer_id}-timer")
        self.backup_pool = ThreadPoolExecutor(
            max_workers=config.backup_workers,
            thread_name_prefix=f"peer{config.peer_id}-backup"
        )
        self.dispatcher = Dispatcher(self)

        factory = channel_factory or multicast_channel_factory(config.multicast_ttl)
        groups = {
            ChannelName.MC: config.mc_group,
            ChannelName.MDB: config.mdb_group,
            ChannelName.MDR: config.mdr_group,
        }
        self.channels: Dict[ChannelName, ServiceChannel] = {
            name: factory(name, group, self.dispatcher.dispatch, config.channel_workers)
            for name, group in groups.items()
        }
        self._running = False

    def start(self) -> None:
        """
        Load state, open the channels and announce this peer.

        Raises:
            KeyMaterialError: If the keys cannot be loaded
            OSError: If a channel cannot be opened
        """
        self.key_provider.get(MAC_KEY_ALIAS)
        self.key_provider.get(ENCRYPTION_KEY_ALIAS)

        self.storage.ensure_directory()
        self.store.load_from_disk()
        self.store.reconcile_with_storage(self.storage)

        for channel in self.channels.values():
            channel.start()
        self.store.start_periodic_save(self.config.save_interval)
        self._running = True

        logger.info(
            f"Peer {self.peer_id} started (protocol {self.config.protocol_version}, "
            f"cap {self.store.max_disk_kb} KB)"
        )
        if self.config.is_enhanced:
            self.send(ChannelName.MC, self.message(MessageType.STARTED))

    def stop(self) -> None:
        """Close the channels, drain the pools and persist metadata."""
        if not self._running:
            return
        self._running = False
        logger.info(f"Peer {self.peer_id} stopping...")

        for channel in self.channels.values():
            channel.stop()
        for instance in self.registry.instances():
            instance.cancel()
        self.scheduler.shutdown(wait=True)
        self.backup_pool.shutdown(wait=True)
        self.store.stop_periodic_save()
        self.store.save_to_disk()
        logger.info(f"Peer {self.peer_id} stopped")

    @property
    def running(self) -> bool:
        return self._running

    # Messaging helpers

    def message(self, msg_type: MessageType, **fields) -> Message:
        """Build an outgoing message stamped with this peer's ID and version."""
        return Message(msg_type=msg_type, version=self.config.protocol_version, sender_id=self.peer_id, **fields)

    def send(self, channel: ChannelName, message: Message) -> bool:
        """
        Encode and send a message.

        Returns:
            True if the datagram left this peer, False if the transport failed
        """
        return self.send_raw(channel, self.codec.build(message))

    def send_raw(self, channel: ChannelName, data: bytes) -> bool:
        try:
            self.channels[channel].send(data)
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Send on {channel.value} failed: {e}")
            return False

    def jitter(self) -> float:
        return random.uniform(self.config.jitter_min, self.config.jitter_max)

    def is_enhanced_exchange(self, message: Message) -> bool:
        """Whether both this peer and the sender run the enhanced protocol."""
        return self.config.is_enhanced and message.is_enhanced

    def key(self, content_id: str, kind: ProtocolKind, extra: Optional[int] = None) -> ProtocolKey:
        return ProtocolKey(self.peer_id, content_id, kind, extra)

    # Front door

    def backup(self, path: str, replication_degree: int) -> operations.BackupOutcome:
        return operations.run_backup(self, path, replication_degree)

    def restore(self, path: str, content_id: Optional[str] = None) -> operations.RestoreOutcome:
        return operations.run_restore(self, path, content_id)

    def delete(self, path: str) -> operations.DeleteOutcome:
        return operations.run_delete(self, path)

    def reclaim(self, max_kb: int) -> operations.ReclaimOutcome:
        return operations.run_reclaim(self, max_kb)

    def info(self) -> operations.InfoReport:
        return operations.build_info(self)

    def cancel_restore(self, content_id: str) -> bool:
        """
        Abort a running restore.

        Returns:
            True if a restore for content_id was running
        """
        instance = self.registry.get(self.key(content_id, ProtocolKind.RESTORE))
        if instance is None:
            return False
        instance.cancel()
        logger.info(f"Restore of {content_id[:12]}... cancelled")
        return True
