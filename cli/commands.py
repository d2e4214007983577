"""Command handler functions for CLI operations."""

from typing import Optional

from common.logging_config import get_logger
from cli.models import (
    BackupCommand,
    CancelCommand,
    ConnectCommand,
    DeleteCommand,
    InfoCommand,
    ReclaimCommand,
    RestoreCommand,
)
from cli.config import Config
from cli.peer_client import PeerClient

logger = get_logger(__name__)


_client: Optional[PeerClient] = None


def get_client() -> PeerClient:
    """
    Get or create global PeerClient instance.

    Returns:
        PeerClient instance
    """
    global _client
    if _client is None:
        logger.debug("Creating new PeerClient instance")
        _client = PeerClient(Config())
    return _client


def handle_backup(cmd: BackupCommand, client: Optional[PeerClient] = None) -> str:
    """
    Handle 'backup' command.

    Args:
        cmd: BackupCommand with path and replication_degree
        client: Optional PeerClient for dependency injection (testing)

    Returns:
        Success or error message
    """
    logger.info(f"Executing backup command: path={cmd.path} degree={cmd.replication_degree}")
    if client is None:
        client = get_client()
    result = client.backup(cmd.path, cmd.replication_degree)
    logger.debug("Backup command completed")
    return result


def handle_restore(cmd: RestoreCommand, client: Optional[PeerClient] = None) -> str:
    """
    Handle 'restore' command.

    Args:
        cmd: RestoreCommand with path and optional content_id
        client: Optional PeerClient for dependency injection (testing)

    Returns:
        Success or error message
    """
    logger.info(f"Executing restore command: path={cmd.path}")
    if client is None:
        client = get_client()
    return client.restore(cmd.path, cmd.content_id)


def handle_cancel(cmd: CancelCommand, client: Optional[PeerClient] = None) -> str:
    if client is None:
        client = get_client()
    return client.cancel_restore(cmd.content_id)


def handle_delete(cmd: DeleteCommand, client: Optional[PeerClient] = None) -> str:
    """
    Handle 'delete' command.

    Args:
        cmd: DeleteCommand with path
        client: Optional PeerClient for dependency injection (testing)

    Returns:
        Success or error message with confirmed and pending peers
    """
    if client is None:
        client = get_client()
    return client.delete(cmd.path)


def handle_reclaim(cmd: ReclaimCommand, client: Optional[PeerClient] = None) -> str:
    """
    Handle 'reclaim' command.

    Args:
        cmd: ReclaimCommand with max_kb
        client: Optional PeerClient for dependency injection (testing)

    Returns:
        Success or error message with evicted chunks
    """
    logger.info(f"Executing reclaim command: max_kb={cmd.max_kb}")
    if client is None:
        client = get_client()
    return client.reclaim(cmd.max_kb)


def handle_info(cmd: InfoCommand, client: Optional[PeerClient] = None) -> str:
    if client is None:
        client = get_client()
    return client.info()


def handle_connect(cmd: ConnectCommand, client: Optional[PeerClient] = None) -> str:
    """
    Handle 'connect' command.

    Args:
        cmd: ConnectCommand with host and port
        client: Optional PeerClient for dependency injection (testing)

    Returns:
        Confirmation message
    """
    if client is None:
        client = get_client()
    client.config.set_peer(cmd.host, cmd.port)
    client.reconnect()
    return f"Now talking to {client.config.get_base_url()}"
