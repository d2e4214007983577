"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class BackupCommand:
    """Back up a file with a replication degree."""

    path: str
    replication_degree: int
    command: Literal["backup"] = "backup"


@dataclass(frozen=True)
class RestoreCommand:
    """Restore a backed-up file."""

    path: str
    content_id: str | None = None
    command: Literal["restore"] = "restore"


@dataclass(frozen=True)
class CancelCommand:
    """Cancel a running restore."""

    content_id: str
    command: Literal["cancel"] = "cancel"


@dataclass(frozen=True)
class DeleteCommand:
    """Delete a backed-up file from every peer."""

    path: str
    command: Literal["delete"] = "delete"


@dataclass(frozen=True)
class ReclaimCommand:
    """Set the peer's storage cap."""

    max_kb: int
    command: Literal["reclaim"] = "reclaim"


@dataclass(frozen=True)
class InfoCommand:
    """Show the peer's state."""

    command: Literal["info"] = "info"


@dataclass(frozen=True)
class ConnectCommand:
    """Point the CLI at another peer."""

    host: str
    port: int
    command: Literal["connect"] = "connect"


CommandRequest = (
    BackupCommand
    | RestoreCommand
    | CancelCommand
    | DeleteCommand
    | ReclaimCommand
    | InfoCommand
    | ConnectCommand
)
