"""Backup service operation routes."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status

from common.logging_config import get_logger
from gateway.schemas.operations import (
    BackupRequest,
    BackupResponse,
    CancelRestoreRequest,
    CancelRestoreResponse,
    DeleteRequest,
    DeleteResponse,
    EvictedChunk,
    InfoResponse,
    ReclaimRequest,
    ReclaimResponse,
    RestoreRequest,
    RestoreResponse
)
from peer.node import Peer

logger = get_logger(__name__)

router = APIRouter(tags=["Operations"])

_peer: Peer = None


def set_peer(peer: Peer):
    """Set the global peer instance"""
    global _peer
    _peer = peer


def get_peer() -> Peer:
    """Dependency to get the running peer"""
    if _peer is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Peer is not running"
        )
    return _peer


# Operations block on protocol timeouts, so the endpoints are plain functions
# and FastAPI runs them on its worker thread pool.

@router.post("/backup", response_model=BackupResponse)
def backup_file(request: BackupRequest, peer: Peer = Depends(get_peer)):
    """
    Back up a local file.

    Raises:
        - 400: Replication degree out of range
        - 404: File not found
        - 409: Backup of the same file already running
        - 413: File too large
        - 503: Some chunk stayed under-replicated
    """
    outcome = peer.backup(request.path, request.replication_degree)
    return BackupResponse(**asdict(outcome))


@router.post("/restore", response_model=RestoreResponse)
def restore_file(request: RestoreRequest, peer: Peer = Depends(get_peer)):
    """
    Restore a backed-up file into the peer's restored directory.

    Raises:
        - 404: File not backed up
        - 409: Restore of the same file already running
        - 502: Chunks could not be collected
    """
    outcome = peer.restore(request.path, request.content_id)
    return RestoreResponse(**asdict(outcome))


@router.post("/restore/cancel", response_model=CancelRestoreResponse)
def cancel_restore(request: CancelRestoreRequest, peer: Peer = Depends(get_peer)):
    """Cancel a running restore."""
    logger.info(f"Cancel requested for restore of {request.content_id[:12]}...")
    return CancelRestoreResponse(
        content_id=request.content_id,
        cancelled=peer.cancel_restore(request.content_id)
    )


@router.post("/delete", response_model=DeleteResponse)
def delete_file(request: DeleteRequest, peer: Peer = Depends(get_peer)):
    """
    Delete a backed-up file from every peer.

    Raises:
        - 404: File not backed up
        - 409: Delete of the same file already running
    """
    outcome = peer.delete(request.path)
    return DeleteResponse(**asdict(outcome))


@router.post("/reclaim", response_model=ReclaimResponse)
def reclaim_space(request: ReclaimRequest, peer: Peer = Depends(get_peer)):
    """
    Set the storage cap and evict chunks until usage fits.

    Raises:
        - 400: Negative cap
        - 409: Another reclaim running
    """
    outcome = peer.reclaim(request.max_kb)
    return ReclaimResponse(
        max_kb=outcome.max_kb,
        used_kb=outcome.used_kb,
        evicted=[EvictedChunk(content_id=cid, chunk_index=idx) for cid, idx in outcome.evicted]
    )


@router.get("/info", response_model=InfoResponse)
def peer_info(peer: Peer = Depends(get_peer)):
    """Report backed-up files, stored chunks and pending deletes."""
    return InfoResponse(**asdict(peer.info()))
