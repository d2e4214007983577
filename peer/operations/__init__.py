"""Protocol operations: initiators and message responders."""

from peer.operations.backup import BackupOutcome, handle_putchunk, handle_stored, run_backup
from peer.operations.delete import DeleteOutcome, handle_delete, handle_deleted, handle_started, run_delete
from peer.operations.info import ChunkReport, FileReport, InfoReport, build_info
from peer.operations.reclaim import ReclaimOutcome, handle_removed, run_reclaim
from peer.operations.restore import (
    RestoreOutcome,
    handle_chunk,
    handle_getchunk,
    handle_info,
    handle_retrieve,
    run_restore,
)

__all__ = [
    'BackupOutcome',
    'ChunkReport',
    'DeleteOutcome',
    'FileReport',
    'InfoReport',
    'ReclaimOutcome',
    'RestoreOutcome',
    'build_info',
    'handle_chunk',
    'handle_delete',
    'handle_deleted',
    'handle_getchunk',
    'handle_info',
    'handle_putchunk',
    'handle_removed',
    'handle_retrieve',
    'handle_started',
    'handle_stored',
    'run_backup',
    'run_delete',
    'run_reclaim',
    'run_restore',
]
