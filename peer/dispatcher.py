"""Routes validated inbound messages to their protocol handlers."""

import logging
from typing import TYPE_CHECKING

from common.types import ChannelName, MessageType
from peer import operations

if TYPE_CHECKING:
    from peer.node import Peer

logger = logging.getLogger(__name__)

# Channel each message type is sent on.
EXPECTED_CHANNEL = {
    MessageType.PUTCHUNK: ChannelName.MDB,
    MessageType.CHUNK: ChannelName.MDR,
}


class Dispatcher:
    """Parses datagrams from any channel and invokes the matching handler."""

    def __init__(self, peer: 'Peer'):
        self._peer = peer

    def dispatch(self, channel: ChannelName, data: bytes) -> None:
        """
        Handle one inbound datagram.

        Invalid or self-sent messages are dropped. Handler errors are logged
        and never escape to the channel worker.

        Args:
            channel: Channel the datagram arrived on
            data: Raw datagram
        """
        peer = self._peer
        message = peer.codec.parse(data)
        if message is None:
            return
        if message.sender_id == peer.peer_id:
            return

        expected = EXPECTED_CHANNEL.get(message.msg_type, ChannelName.MC)
        if channel is not expected:
            logger.debug(f"Dropping {message.msg_type.value} received on {channel.value}, expected {expected.value}")
            return

        logger.debug(
            f"{channel.value} <- {message.msg_type.value} from peer {message.sender_id} "
            f"v{message.version} chunk={message.chunk_index}"
        )

        try:
            match message.msg_type:
                case MessageType.PUTCHUNK:
                    operations.handle_putchunk(peer, message)
                case MessageType.STORED:
                    operations.handle_stored(peer, message)
                case MessageType.GETCHUNK:
                    operations.handle_getchunk(peer, message)
                case MessageType.CHUNK:
                    operations.handle_chunk(peer, message)
                case MessageType.DELETE:
                    operations.handle_delete(peer, message)
                case MessageType.DELETED:
                    operations.handle_deleted(peer, message)
                case MessageType.REMOVED:
                    operations.handle_removed(peer, message)
                case MessageType.STARTED:
                    operations.handle_started(peer, message)
                case MessageType.RETRIEVE:
                    operations.handle_retrieve(peer, message)
                case MessageType.INFO:
                    operations.handle_info(peer, message)
                case _:
                    logger.warning(f"No handler for message type {message.msg_type}")
        except RuntimeError as e:
            # Scheduler already shut down
            logger.debug(f"Dropping {message.msg_type.value} during shutdown: {e}")
        except Exception as e:
            logger.error(f"Error handling {message.msg_type.value} from peer {message.sender_id}: {e}", exc_info=True)
