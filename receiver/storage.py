"""Manages upload sessions and assembled files on disk."""

import json
import os
import re
import shutil
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Union

from common.constants import FILE_READ_PIECE_BYTES
from common.logging_config import get_logger
from receiver.exceptions import InvalidChunkError

logger = get_logger(__name__)

FILE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")
FILE_HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")


@dataclass
class SessionMeta:
    """Upload metadata fixed by the first chunk received for a file_id."""
    file_id: str
    file_name: str
    total_size: int
    mime_type: str
    chunk_size: int
    total_chunks: int
    file_hash: str


@dataclass
class StoredFile:
    """Metadata of an assembled file."""
    file_hash: str
    file_name: str
    mime_type: str
    size: int


def validate_file_id(file_id: str) -> str:
    if not FILE_ID_PATTERN.match(file_id or ""):
        raise InvalidChunkError(f"Invalid file_id: {file_id!r}")
    return file_id


def validate_file_hash(file_hash: str) -> str:
    if not FILE_HASH_PATTERN.match(file_hash or ""):
        raise InvalidChunkError(f"Invalid file_hash: {file_hash!r}")
    return file_hash


def _atomic_write(path: Path, data: bytes) -> None:
    """Write to a sibling temp file, then replace; readers never see partial data."""
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


class ChunkStore:
    """
    Disk layout rooted at `root`:

        sessions/<file_id>/session.json   SessionMeta
        sessions/<file_id>/<index>.chk    chunk bytes
        files/<file_hash>                 assembled content
        files/<file_hash>.json            StoredFile

    Chunk writes are keyed by (file_id, index) and replace existing data
    atomically, so a repeated upload of the same chunk is harmless.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.sessions_dir = self.root / "sessions"
        self.files_dir = self.root / "files"

    def ensure_directories(self) -> None:
        """Ensure storage directories exist."""
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.files_dir.mkdir(parents=True, exist_ok=True)

    def session_dir(self, file_id: str) -> Path:
        return self.sessions_dir / validate_file_id(file_id)

    def get_chunk_path(self, file_id: str, index: int) -> Path:
        """
        Get file path for a chunk.

        Args:
            file_id: Upload session id
            index: Chunk index

        Returns:
            Path object for chunk file
        """
        return self.session_dir(file_id) / f"{index}.chk"

    def load_session(self, file_id: str) -> Optional[SessionMeta]:
        """
        Load session metadata.

        Returns:
            SessionMeta, or None if no chunk has been received for file_id
        """
        meta_path = self.session_dir(file_id) / "session.json"
        if not meta_path.exists():
            return None
        return SessionMeta(**json.loads(meta_path.read_text()))

    def save_session(self, meta: SessionMeta) -> None:
        session_dir = self.session_dir(meta.file_id)
        session_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(session_dir / "session.json", json.dumps(asdict(meta)).encode())

    def write_chunk(self, file_id: str, index: int, data: bytes) -> str:
        """
        Write chunk data to disk, replacing any previous copy.

        Args:
            file_id: Upload session id
            index: Chunk index
            data: Raw chunk data

        Returns:
            String path to written file

        Raises:
            OSError: If write operation fails
        """
        filepath = self.get_chunk_path(file_id, index)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(filepath, data)
        return str(filepath)

    def uploaded_chunks(self, file_id: str) -> List[int]:
        """
        List the chunk indices stored for file_id.

        Returns:
            Sorted chunk indices; empty for an unknown file_id
        """
        session_dir = self.session_dir(file_id)
        if not session_dir.is_dir():
            return []
        indices = []
        for path in session_dir.glob("*.chk"):
            if path.stem.isdigit():
                indices.append(int(path.stem))
        return sorted(indices)

    def read_chunk_streaming(self, file_id: str, index: int, piece_size: int = FILE_READ_PIECE_BYTES) -> Iterator[bytes]:
        """
        Stream chunk data in pieces.

        Raises:
            FileNotFoundError: If chunk does not exist
        """
        with open(self.get_chunk_path(file_id, index), 'rb') as f:
            while True:
                piece = f.read(piece_size)
                if not piece:
                    break
                yield piece

    def assemble(self, file_id: str, total_chunks: int) -> Path:
        """
        Concatenate chunks 0..total_chunks-1 into a temporary file.

        The caller owns the returned file and must either store or delete it.

        Raises:
            FileNotFoundError: If a chunk is missing
        """
        self.files_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.files_dir / f".assemble-{file_id}-{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp_path, 'wb') as out:
                for index in range(total_chunks):
                    for piece in self.read_chunk_streaming(file_id, index):
                        out.write(piece)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        return tmp_path

    def get_file_path(self, file_hash: str) -> Path:
        return self.files_dir / validate_file_hash(file_hash)

    def has_file(self, file_hash: str) -> bool:
        return self.get_file_path(file_hash).exists()

    def load_file_meta(self, file_hash: str) -> Optional[StoredFile]:
        meta_path = self.files_dir / f"{validate_file_hash(file_hash)}.json"
        if not meta_path.exists():
            return None
        return StoredFile(**json.loads(meta_path.read_text()))

    def store_file(self, tmp_path: Path, stored: StoredFile) -> Path:
        """
        Move an assembled temp file into the content-addressed store.

        Storing content that is already present keeps the existing copy.

        Returns:
            Path of the stored file
        """
        dest = self.get_file_path(stored.file_hash)
        if dest.exists():
            tmp_path.unlink(missing_ok=True)
            return dest
        _atomic_write(self.files_dir / f"{stored.file_hash}.json", json.dumps(asdict(stored)).encode())
        os.replace(tmp_path, dest)
        logger.info(f"Stored file {stored.file_name} ({stored.size} bytes) [file_hash={stored.file_hash}]")
        return dest

    def delete_session(self, file_id: str) -> bool:
        """
        Delete all chunk state of an upload session.

        Returns:
            True if state was deleted, False if it didn't exist
        """
        session_dir = self.session_dir(file_id)
        if not session_dir.exists():
            return False
        shutil.rmtree(session_dir)
        return True
