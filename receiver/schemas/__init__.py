"""Pydantic schemas for API requests and responses."""

from receiver.schemas.upload import (
    FileExistsResponse,
    ChunkInfoResponse,
    ChunkUploadResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    CancelUploadResponse
)
from receiver.schemas.common import ErrorResponse, HealthResponse

__all__ = [
    "FileExistsResponse",
    "ChunkInfoResponse",
    "ChunkUploadResponse",
    "CompleteUploadRequest",
    "CompleteUploadResponse",
    "CancelUploadResponse",
    "ErrorResponse",
    "HealthResponse"
]
