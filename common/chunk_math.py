"""Pure functions for chunk layout and progress accounting."""

import math
from typing import AbstractSet, Iterable, Iterator, List

from common.types import Chunk, ProgressSnapshot


def chunk_count(size: int, chunk_size: int) -> int:
    """Number of chunks needed to cover size bytes."""
    return math.ceil(size / chunk_size)


def chunk_range(index: int, chunk_size: int, size: int) -> Chunk:
    """
    Byte range of chunk `index`.

    The last chunk ends exactly at `size` and may be shorter than chunk_size.
    """
    start = index * chunk_size
    end = min(start + chunk_size, size)
    return Chunk(index=index, byte_start=start, byte_end=end, size=end - start)


def iter_chunks(size: int, chunk_size: int) -> Iterator[Chunk]:
    for index in range(chunk_count(size, chunk_size)):
        yield chunk_range(index, chunk_size, size)


def bytes_for(indices: Iterable[int], chunk_size: int, size: int) -> int:
    """Total byte size of the given chunk indices; out-of-range indices count as zero."""
    total = chunk_count(size, chunk_size)
    return sum(
        chunk_range(index, chunk_size, size).size
        for index in set(indices)
        if 0 <= index < total
    )


def progress_percent(uploaded: AbstractSet[int], total: int) -> int:
    """Percentage of chunks uploaded, rounded and saturating at 100."""
    if total <= 0:
        return 100
    return min(100, round(len(uploaded) / total * 100))


def missing_chunks(uploaded: AbstractSet[int], total: int) -> List[int]:
    """Indices in [0, total) not yet uploaded, ascending."""
    return [index for index in range(total) if index not in uploaded]


def is_complete(uploaded: AbstractSet[int], total: int) -> bool:
    return not missing_chunks(uploaded, total)


def build_snapshot(uploaded: AbstractSet[int], chunk_size: int, size: int) -> ProgressSnapshot:
    """
    Recompute a progress snapshot from the uploaded set.

    bytes_uploaded is always derived from the set, so re-reporting a chunk
    (after a retry, or one the server already had) never double counts.
    """
    total = chunk_count(size, chunk_size)
    indices = frozenset(index for index in uploaded if 0 <= index < total)
    return ProgressSnapshot(
        uploaded_chunk_indices=indices,
        bytes_uploaded=bytes_for(indices, chunk_size, size),
        total_bytes=size,
        total_chunks=total,
    )
