"""Upload options, state enums and event messages for the uploader."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional, Union

from common.constants import (
    CHUNK_TIMEOUT_SECONDS,
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_MAX_CONCURRENCY,
)
from common.exceptions import UploadError
from common.types import Chunk, ProgressSnapshot


class AttemptState(str, Enum):
    """Lifecycle of one upload attempt."""

    CHECKING_DEDUP = "checking_dedup"
    RESUMING = "resuming"
    SCHEDULING = "scheduling"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (AttemptState.COMPLETED, AttemptState.FAILED, AttemptState.CANCELLED)


class ChunkState(str, Enum):
    """Lifecycle of one chunk within an attempt."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    UPLOADED = "uploaded"
    PERMANENTLY_FAILED = "permanently_failed"


@dataclass
class ChunkTransfer:
    """
    Per-chunk bookkeeping.

    The scheduling loop sets IN_FLIGHT on admission and the final state on
    completion; while admitted, only the chunk's own task touches it.
    """
    chunk: Chunk
    state: ChunkState = ChunkState.PENDING
    attempts: int = 0


@dataclass(frozen=True)
class UploadOptions:
    """Caller options for one upload."""

    chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    chunk_timeout: float = CHUNK_TIMEOUT_SECONDS

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {self.chunk_size}")
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if self.chunk_timeout <= 0:
            raise ValueError(f"chunk_timeout must be > 0, got {self.chunk_timeout}")


@dataclass(frozen=True)
class HashProgressEvent:
    """Share of the content hashed so far, before any chunk is sent."""

    percent: int
    type: Literal["hash_progress"] = "hash_progress"


@dataclass(frozen=True)
class ProgressEvent:
    """Progress over the cumulative uploaded set."""

    snapshot: ProgressSnapshot
    type: Literal["progress"] = "progress"


@dataclass(frozen=True)
class CompleteEvent:
    """Upload finished; the file is stored at resource_url."""

    resource_url: str
    deduplicated: bool = False
    type: Literal["complete"] = "complete"


@dataclass(frozen=True)
class ErrorEvent:
    """Upload attempt failed."""

    reason: str
    chunk_index: Optional[int] = None
    error: Optional[UploadError] = field(default=None, compare=False)
    type: Literal["error"] = "error"


@dataclass(frozen=True)
class CancelledEvent:
    """Upload attempt was cancelled by the caller."""

    reason: str = "Upload cancelled"
    type: Literal["cancelled"] = "cancelled"


UploadEvent = Union[HashProgressEvent, ProgressEvent, CompleteEvent, ErrorEvent, CancelledEvent]
