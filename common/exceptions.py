"""Custom exception classes for the backup service."""

from typing import List


class BackupServiceError(Exception):
    """
    Base exception class for all backup service errors.
    """
    pass


class KeyMaterialError(BackupServiceError):
    """
    Raised when authentication or encryption keys cannot be obtained.
    No operation can proceed without them.
    """
    pass


class InvalidRequestError(BackupServiceError):
    """
    Raised when an operation is called with invalid arguments.
    """
    pass


class SourceFileNotFoundError(BackupServiceError):
    """
    Raised when the file to back up does not exist.
    """
    pass


class FileNotBackedUpError(BackupServiceError):
    """
    Raised when no backup for the requested file can be found locally or on the network.
    """
    pass


class FileTooLargeError(BackupServiceError):
    """
    Raised when a file would need more chunks than the protocol can address.
    """
    pass


class OperationInProgressError(BackupServiceError):
    """
    Raised when the same operation is already running for a file.
    """
    pass


class InsufficientReplicationError(BackupServiceError):
    """
    Raised when a backup finished without reaching the desired degree for every chunk.
    """

    def __init__(self, content_id: str, missing_chunks: List[int], desired_degree: int):
        self.content_id = content_id
        self.missing_chunks = sorted(missing_chunks)
        self.desired_degree = desired_degree
        super().__init__(
            f"Backup of {content_id[:12]}... under-replicated: "
            f"{len(self.missing_chunks)} chunk(s) below degree {desired_degree}"
        )


class RestoreError(BackupServiceError):
    """
    Raised when a restore could not collect every chunk.
    """
    pass
