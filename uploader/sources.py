"""Readable byte sources for uploads (files on disk, in-memory buffers)."""

import mimetypes
import os
from pathlib import Path
from typing import Optional, Protocol, Union

from common.constants import DEFAULT_MIME_TYPE


class ChunkSource(Protocol):
    """An opaque binary blob with a known total size."""

    name: str
    mime_type: str

    @property
    def size(self) -> int:
        ...

    def read(self, start: int, end: int) -> bytes:
        """Return the bytes in [start, end)."""
        ...


def guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or DEFAULT_MIME_TYPE


class FileSource:
    """
    A file on disk.

    Every read opens its own handle, so concurrent reads from worker threads
    never share a file position.
    """

    def __init__(self, path: Union[str, Path], mime_type: Optional[str] = None):
        self.path = Path(path)
        if not self.path.is_file():
            raise FileNotFoundError(f"Not a file: {self.path}")
        self.name = self.path.name
        self.mime_type = mime_type or guess_mime_type(self.name)
        self._size = os.path.getsize(self.path)

    @property
    def size(self) -> int:
        return self._size

    def read(self, start: int, end: int) -> bytes:
        with open(self.path, 'rb') as f:
            f.seek(start)
            return f.read(end - start)


class BytesSource:
    """An in-memory buffer."""

    def __init__(self, data: bytes, name: str = "upload.bin", mime_type: Optional[str] = None):
        self._data = bytes(data)
        self.name = name
        self.mime_type = mime_type or guess_mime_type(name)

    @property
    def size(self) -> int:
        return len(self._data)

    def read(self, start: int, end: int) -> bytes:
        return self._data[start:end]
