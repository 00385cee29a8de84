"""Unit tests for chunk layout and progress accounting."""

import pytest

from common.chunk_math import (
    build_snapshot,
    bytes_for,
    chunk_count,
    chunk_range,
    is_complete,
    iter_chunks,
    missing_chunks,
    progress_percent,
)
from common.types import ProgressSnapshot


@pytest.mark.parametrize("size,chunk_size,expected", [
    (10_000_000, 2_000_000, 5),
    (10_000_001, 2_000_000, 6),
    (1, 2_000_000, 1),
    (2_000_000, 2_000_000, 1),
    (0, 2_000_000, 0),
])
def test_chunk_count(size, chunk_size, expected):
    """Test chunk count rounds up to cover every byte."""
    assert chunk_count(size, chunk_size) == expected


def test_chunks_cover_file_exactly():
    """Test chunk lengths sum to the file size and the last chunk ends at the file size."""
    size = 7_340_033
    chunks = list(iter_chunks(size, 1_048_576))

    assert sum(c.size for c in chunks) == size
    assert chunks[0].byte_start == 0
    assert chunks[-1].byte_end == size
    for previous, current in zip(chunks, chunks[1:]):
        assert previous.byte_end == current.byte_start


def test_last_chunk_is_short():
    """Test the last chunk only holds the remainder."""
    chunk = chunk_range(5, 2_000_000, 10_000_001)

    assert chunk.byte_start == 10_000_000
    assert chunk.byte_end == 10_000_001
    assert chunk.size == 1


def test_missing_chunks_sorted_and_disjoint():
    """Test missing chunks are ascending and complement the uploaded set."""
    uploaded = {4, 0, 2}
    missing = missing_chunks(uploaded, 6)

    assert missing == [1, 3, 5]
    assert set(missing) | uploaded == set(range(6))
    assert missing_chunks(set(range(6)) - set(missing), 6) == missing


def test_missing_chunks_ignores_out_of_range():
    """Test indices outside the layout do not affect the result."""
    assert missing_chunks({0, 1, 99}, 3) == [2]


def test_is_complete():
    assert is_complete({0, 1, 2}, 3)
    assert not is_complete({0, 2}, 3)


def test_progress_percent_saturates():
    """Test percentage is rounded, bounded and 100 for empty layouts."""
    assert progress_percent(set(), 4) == 0
    assert progress_percent({0}, 3) == 33
    assert progress_percent({0, 1, 2}, 3) == 100
    assert progress_percent({0, 1, 2, 3}, 3) == 100
    assert progress_percent(set(), 0) == 100


def test_snapshot_percent_matches_progress_percent():
    snapshot = ProgressSnapshot(
        uploaded_chunk_indices=frozenset({0, 1, 2, 3}), bytes_uploaded=4, total_bytes=3, total_chunks=3
    )
    empty = ProgressSnapshot(uploaded_chunk_indices=frozenset(), bytes_uploaded=0, total_bytes=0, total_chunks=0)

    assert snapshot.percent == progress_percent({0, 1, 2, 3}, 3) == 100
    assert empty.percent == 100


def test_bytes_for_counts_each_chunk_once():
    """Test duplicate and out-of-range indices are not double counted."""
    assert bytes_for([0, 0, 5, 99], 2_000_000, 10_000_001) == 2_000_001


def test_build_snapshot_from_uploaded_set():
    """Test snapshot byte totals are derived from the uploaded set."""
    snapshot = build_snapshot({3, 4}, 2_000_000, 9_000_000)

    assert snapshot.uploaded_chunk_indices == frozenset({3, 4})
    assert snapshot.bytes_uploaded == 3_000_000
    assert snapshot.total_bytes == 9_000_000
    assert snapshot.total_chunks == 5
    assert snapshot.percent == 40
