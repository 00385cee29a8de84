"""Shared data type definitions (FileDescriptor, Chunk, ProgressSnapshot, outcomes)."""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Union

from common.exceptions import UploadError


@dataclass(frozen=True)
class FileDescriptor:
    """
    Identity and metadata of a file being uploaded.

    content_hash is the deduplication key; file_id names the server-side
    upload session and is derived from content_hash and the chunk layout.
    """
    file_id: str
    file_name: str
    total_size: int
    mime_type: str
    content_hash: str


@dataclass(frozen=True)
class Chunk:
    """
    A contiguous byte range of a file, the unit of transfer and retry.
    """
    index: int
    byte_start: int
    byte_end: int
    size: int


@dataclass(frozen=True)
class ProgressSnapshot:
    """
    Upload progress derived from the authoritative set of uploaded chunks.
    """
    uploaded_chunk_indices: FrozenSet[int]
    bytes_uploaded: int
    total_bytes: int
    total_chunks: int

    @property
    def percent(self) -> int:
        from common.chunk_math import progress_percent
        return progress_percent(self.uploaded_chunk_indices, self.total_chunks)


@dataclass(frozen=True)
class Completed:
    resource_url: str
    deduplicated: bool = False


@dataclass(frozen=True)
class Failed:
    reason: str
    chunk_index: Optional[int] = None
    error: Optional[UploadError] = field(default=None, compare=False)


@dataclass(frozen=True)
class Cancelled:
    reason: str = "Upload cancelled"


TransferOutcome = Union[Completed, Failed, Cancelled]


@dataclass(frozen=True)
class ExistsResult:
    exists: bool
    url: Optional[str] = None


@dataclass(frozen=True)
class ChunkAck:
    accepted: bool
    complete: bool = False
    resource_url: Optional[str] = None
    message: str = ""


@dataclass(frozen=True)
class FinalizeResult:
    success: bool
    resource_url: str
    message: str = ""


@dataclass(frozen=True)
class UploadStatus:
    uploaded_chunks: FrozenSet[int]
    total_chunks: int
    is_complete: bool
