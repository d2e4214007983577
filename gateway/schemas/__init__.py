"""Pydantic schemas for API requests and responses."""

from gateway.schemas.common import ErrorResponse
from gateway.schemas.operations import (
    BackupRequest,
    BackupResponse,
    CancelRestoreRequest,
    CancelRestoreResponse,
    ChunkReportResponse,
    DeleteRequest,
    DeleteResponse,
    EvictedChunk,
    FileReportResponse,
    InfoResponse,
    ReclaimRequest,
    ReclaimResponse,
    RestoreRequest,
    RestoreResponse
)

__all__ = [
    "BackupRequest",
    "BackupResponse",
    "CancelRestoreRequest",
    "CancelRestoreResponse",
    "ChunkReportResponse",
    "DeleteRequest",
    "DeleteResponse",
    "EvictedChunk",
    "FileReportResponse",
    "InfoResponse",
    "ReclaimRequest",
    "ReclaimResponse",
    "RestoreRequest",
    "RestoreResponse",
    "ErrorResponse"
]
