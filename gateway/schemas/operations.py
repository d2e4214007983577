"""Pydantic schemas for backup service operations."""

from typing import Dict, List, Optional

from pydantic import BaseModel


class BackupRequest(BaseModel):
    """Request model for backing up a file."""
    path: str
    replication_degree: int


class BackupResponse(BaseModel):
    """Response model for a completed backup."""
    content_id: str
    path: str
    total_chunks: int
    replication_degree: int


class RestoreRequest(BaseModel):
    """Request model for restoring a file."""
    path: str
    content_id: Optional[str] = None


class RestoreResponse(BaseModel):
    """Response model for a completed restore."""
    content_id: str
    output_path: str
    total_chunks: int


class CancelRestoreRequest(BaseModel):
    content_id: str


class CancelRestoreResponse(BaseModel):
    content_id: str
    cancelled: bool


class DeleteRequest(BaseModel):
    """Request model for deleting a file from the network."""
    path: str


class DeleteResponse(BaseModel):
    """Response model for a delete."""
    content_id: str
    confirmed_peers: List[int]
    pending_peers: List[int]


class ReclaimRequest(BaseModel):
    """Request model for changing the storage cap."""
    max_kb: int


class EvictedChunk(BaseModel):
    content_id: str
    chunk_index: int


class ReclaimResponse(BaseModel):
    """Response model for a reclaim."""
    max_kb: int
    used_kb: float
    evicted: List[EvictedChunk]


class FileReportResponse(BaseModel):
    """A file backed up by this peer."""
    path: str
    content_id: str
    desired_degree: int
    chunks: Dict[int, int]


class ChunkReportResponse(BaseModel):
    """A chunk stored on this peer."""
    content_id: str
    chunk_index: int
    size_kb: float
    desired_degree: int
    perceived_degree: int


class InfoResponse(BaseModel):
    """Response model for the peer state report."""
    peer_id: int
    protocol_version: str
    max_kb: int
    used_kb: float
    backed_up_files: List[FileReportResponse]
    stored_chunks: List[ChunkReportResponse]
    pending_deletes: Dict[int, List[str]]
