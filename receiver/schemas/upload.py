"""Pydantic schemas for chunked upload endpoints."""

from typing import List, Optional
from pydantic import BaseModel, Field

from common.constants import DEFAULT_MIME_TYPE


class FileExistsResponse(BaseModel):
    """Response model for content hash lookups."""
    exists: bool
    url: Optional[str] = None


class ChunkInfoResponse(BaseModel):
    """Response model for resume and status queries."""
    uploaded_chunks: List[int]
    total_chunks: int
    is_complete: bool


class ChunkUploadResponse(BaseModel):
    """Response model for a single chunk upload."""
    accepted: bool
    complete: bool = False
    resource_url: Optional[str] = None
    message: str = ""


class CompleteUploadRequest(BaseModel):
    """Request model for assembling an upload."""
    file_id: str
    file_name: str
    total_chunks: int = Field(..., gt=0)
    file_hash: str
    total_size: int = Field(..., gt=0)
    mime_type: str = DEFAULT_MIME_TYPE


class CompleteUploadResponse(BaseModel):
    """Response model for upload assembly."""
    success: bool
    resource_url: str
    message: str


class CancelUploadResponse(BaseModel):
    """Response model for upload cancellation."""
    success: bool
