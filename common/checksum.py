"""Provides SHA-256 content hashing shared by the uploader and the receiver."""

import hashlib
from pathlib import Path
from typing import Callable, Optional, Union

from common.constants import HASH_WINDOW_BYTES, SMALL_FILE_HASH_THRESHOLD


def compute_checksum(data: bytes) -> str:
    """
    Compute SHA-256 checksum for given data.

    Args:
        data: Bytes to compute checksum for

    Returns:
        Hexadecimal string representation of SHA-256 hash
    """
    return hashlib.sha256(data).hexdigest()


def verify_checksum(data: bytes, expected: str) -> bool:
    return compute_checksum(data) == expected


class ContentHasher:
    """
    Calculate a file's content hash incrementally.

    Inputs smaller than SMALL_FILE_HASH_THRESHOLD are hashed directly. Larger
    inputs are split into fixed windows; each window is hashed on its own and
    the content hash is the SHA-256 of the concatenated window hex digests.
    The window boundaries depend only on byte offsets, so the result does not
    depend on how the data is fed to update().

    Usage:
        hasher = ContentHasher(total_size)
        hasher.update(piece1)
        hasher.update(piece2)
        content_hash = hasher.finalize()
    """

    def __init__(self, total_size: int, window_size: int = HASH_WINDOW_BYTES):
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        self.total_size = total_size
        self.window_size = window_size
        self.windowed = total_size >= SMALL_FILE_HASH_THRESHOLD
        self._outer = hashlib.sha256()
        self._window = hashlib.sha256()
        self._window_fill = 0
        self._consumed = 0
        self._finalized = False

    @property
    def consumed(self) -> int:
        return self._consumed

    def update(self, data: bytes) -> None:
        """
        Update the hash with the next bytes of the file.

        Args:
            data: Bytes following everything passed so far
        """
        if self._finalized:
            raise ValueError("Cannot update after finalization")
        self._consumed += len(data)

        if not self.windowed:
            self._outer.update(data)
            return

        view = memoryview(data)
        while view:
            room = self.window_size - self._window_fill
            piece = view[:room]
            self._window.update(piece)
            self._window_fill += len(piece)
            view = view[len(piece):]
            if self._window_fill == self.window_size:
                self._close_window()

    def _close_window(self) -> None:
        self._outer.update(self._window.hexdigest().encode('ascii'))
        self._window = hashlib.sha256()
        self._window_fill = 0

    def finalize(self) -> str:
        """
        Finalize the calculation and return the content hash.

        Returns:
            Hexadecimal string representation of the content hash
        """
        if self._finalized:
            raise ValueError("Hasher already finalized")
        if self.windowed and self._window_fill:
            self._close_window()
        self._finalized = True
        return self._outer.hexdigest()


def compute_content_hash(
    read: Callable[[int, int], bytes],
    size: int,
    window_size: int = HASH_WINDOW_BYTES,
    on_progress: Optional[Callable[[int], None]] = None,
) -> str:
    """
    Hash `size` bytes obtained through a range reader.

    Args:
        read: Callable returning the bytes in [start, end)
        size: Total number of bytes
        window_size: Hash window size in bytes
        on_progress: Optional callback receiving a 0-100 percentage after each window

    Returns:
        Content hash hex string
    """
    hasher = ContentHasher(size, window_size)
    offset = 0
    while offset < size:
        end = min(offset + window_size, size)
        hasher.update(read(offset, end))
        offset = end
        if on_progress:
            on_progress(round(offset / size * 100))
    if on_progress and size == 0:
        on_progress(100)
    return hasher.finalize()


def compute_file_hash(path: Union[str, Path], window_size: int = HASH_WINDOW_BYTES) -> str:
    """
    Compute the content hash of a file on disk.

    Args:
        path: Path to the file
        window_size: Hash window size in bytes

    Returns:
        Content hash hex string
    """
    path = Path(path)
    size = path.stat().st_size
    hasher = ContentHasher(size, window_size)
    with open(path, 'rb') as f:
        while True:
            piece = f.read(window_size)
            if not piece:
                break
            hasher.update(piece)
    return hasher.finalize()
