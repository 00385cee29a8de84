"""Upload service for business logic."""

import asyncio
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from common.checksum import compute_file_hash
from common.chunk_math import chunk_count, chunk_range, is_complete, missing_chunks
from common.constants import UPLOAD_API_PREFIX
from common.logging_config import get_logger
from receiver import config
from receiver.exceptions import (
    ChecksumMismatchError,
    FileTooLargeError,
    InvalidChunkError,
    MissingChunksError,
    StoredFileNotFoundError,
    UnsupportedMediaTypeError,
    UploadSessionNotFoundError,
)
from receiver.storage import ChunkStore, SessionMeta, StoredFile, validate_file_hash

logger = get_logger(__name__)

def resource_url(file_hash: str) -> str:
    return f"{UPLOAD_API_PREFIX}/files/{file_hash}"


def mime_type_allowed(mime_type: str, allowed: List[str]) -> bool:
    if not allowed:
        return True
    for pattern in allowed:
        if pattern.endswith("/*") and mime_type.startswith(pattern[:-1]):
            return True
        if mime_type == pattern:
            return True
    return False


class UploadService:
    def __init__(
        self,
        store: Optional[ChunkStore] = None,
        auto_assemble: Optional[bool] = None,
        max_file_size: Optional[int] = None,
        allowed_mime_types: Optional[List[str]] = None,
    ):
        self.store = store or ChunkStore(config.UPLOAD_STORAGE_PATH)
        self.auto_assemble = config.UPLOAD_AUTO_ASSEMBLE if auto_assemble is None else auto_assemble
        self.max_file_size = config.UPLOAD_MAX_FILE_SIZE if max_file_size is None else max_file_size
        self.allowed_mime_types = (
            config.UPLOAD_ALLOWED_MIME_TYPES if allowed_mime_types is None else allowed_mime_types
        )
        # Assembly of one file_id never runs twice at once, whichever request triggers it
        self._assembly_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def check_file(self, file_hash: str) -> Tuple[bool, Optional[str]]:
        """
        Look up stored content by hash.

        Returns:
            (exists, resource_url or None)
        """
        if self.store.has_file(validate_file_hash(file_hash)):
            return True, resource_url(file_hash)
        return False, None

    def chunk_info(self, file_id: str) -> Tuple[List[int], int, bool]:
        """
        Report the chunks stored for file_id.

        An unknown file_id reports no chunks, so clients treat it as a fresh upload.

        Returns:
            (uploaded chunk indices, total chunks, is_complete)
        """
        meta = self.store.load_session(file_id)
        if meta is None:
            return [], 0, False
        uploaded = self.store.uploaded_chunks(file_id)
        return uploaded, meta.total_chunks, is_complete(set(uploaded), meta.total_chunks)

    def status(self, file_id: str) -> Tuple[List[int], int, bool]:
        """
        Same as chunk_info, but an unknown file_id is an error.

        Raises:
            UploadSessionNotFoundError: If no chunk was received for file_id
        """
        if self.store.load_session(file_id) is None:
            raise UploadSessionNotFoundError(f"No upload session for file_id {file_id}")
        return self.chunk_info(file_id)

    def _validate_metadata(self, meta: SessionMeta) -> None:
        if meta.total_size <= 0:
            raise InvalidChunkError("total_size must be positive")
        if meta.chunk_size <= 0:
            raise InvalidChunkError("chunk_size must be positive")
        expected_chunks = chunk_count(meta.total_size, meta.chunk_size)
        if meta.total_chunks != expected_chunks:
            raise InvalidChunkError(
                f"total_chunks {meta.total_chunks} does not match "
                f"{meta.total_size} bytes in {meta.chunk_size}-byte chunks ({expected_chunks})"
            )
        if self.max_file_size and meta.total_size > self.max_file_size:
            raise FileTooLargeError(
                f"File size {meta.total_size} exceeds limit of {self.max_file_size} bytes"
            )
        if not mime_type_allowed(meta.mime_type, self.allowed_mime_types):
            raise UnsupportedMediaTypeError(f"Mime type {meta.mime_type} is not accepted")
        validate_file_hash(meta.file_hash)

    def _open_session(self, meta: SessionMeta) -> SessionMeta:
        existing = self.store.load_session(meta.file_id)
        if existing is None:
            self.store.save_session(meta)
            logger.info(
                f"Upload session opened: {meta.file_name} ({meta.total_size} bytes, "
                f"{meta.total_chunks} chunks) [file_id={meta.file_id}]"
            )
            return meta
        for field in ("total_size", "chunk_size", "total_chunks", "file_hash"):
            if getattr(existing, field) != getattr(meta, field):
                raise InvalidChunkError(
                    f"{field} conflicts with existing upload session [file_id={meta.file_id}]"
                )
        return existing

    async def receive_chunk(self, meta: SessionMeta, chunk_index: int, data: bytes) -> Tuple[bool, Optional[str], str]:
        """
        Store one chunk.

        Args:
            meta: Upload metadata sent with the chunk
            chunk_index: Index of the chunk
            data: Chunk bytes

        Returns:
            (complete, resource_url or None, message)

        Raises:
            InvalidChunkError: If the chunk or its metadata is invalid
            FileTooLargeError: If the file exceeds the size limit
            UnsupportedMediaTypeError: If the mime type is not accepted
        """
        self._validate_metadata(meta)
        if not 0 <= chunk_index < meta.total_chunks:
            raise InvalidChunkError(
                f"chunk_index {chunk_index} out of range [0, {meta.total_chunks})"
            )
        if not data:
            raise InvalidChunkError(f"Chunk {chunk_index} is empty")
        expected = chunk_range(chunk_index, meta.chunk_size, meta.total_size).size
        if len(data) != expected:
            raise InvalidChunkError(
                f"Chunk {chunk_index} has {len(data)} bytes, expected {expected}"
            )

        if self.store.has_file(meta.file_hash):
            logger.info(f"Chunk {chunk_index} for stored content, upload already complete [file_id={meta.file_id}]")
            return True, resource_url(meta.file_hash), "File already stored"

        session = self._open_session(meta)
        await asyncio.to_thread(self.store.write_chunk, session.file_id, chunk_index, data)
        logger.debug(f"Chunk {chunk_index} stored ({len(data)} bytes) [file_id={session.file_id}]")

        if self.auto_assemble and is_complete(set(self.store.uploaded_chunks(session.file_id)), session.total_chunks):
            url = await self._assemble(session)
            return True, url, "All chunks received, file assembled"

        return False, None, f"Chunk {chunk_index} stored"

    async def complete(
        self,
        file_id: str,
        file_name: str,
        total_chunks: int,
        file_hash: str,
        total_size: int,
        mime_type: str,
    ) -> str:
        """
        Assemble, verify and store an upload.

        Returns:
            Resource URL of the stored file

        Raises:
            UploadSessionNotFoundError: If no chunk was received for file_id
            InvalidChunkError: If the request disagrees with the session
            MissingChunksError: If some chunks were never received
            ChecksumMismatchError: If the assembled bytes do not match file_hash
        """
        validate_file_hash(file_hash)
        if self.store.has_file(file_hash):
            await asyncio.to_thread(self.store.delete_session, file_id)
            return resource_url(file_hash)

        session = self.store.load_session(file_id)
        if session is None:
            raise UploadSessionNotFoundError(f"No upload session for file_id {file_id}")
        if (session.total_chunks, session.total_size, session.file_hash) != (total_chunks, total_size, file_hash):
            raise InvalidChunkError(f"Completion request conflicts with upload session [file_id={file_id}]")

        # The request's name and type win over the first chunk's
        session.file_name = file_name or session.file_name
        session.mime_type = mime_type or session.mime_type
        return await self._assemble(session)

    async def _assemble(self, session: SessionMeta) -> str:
        async with self._assembly_locks[session.file_id]:
            if self.store.has_file(session.file_hash):
                await asyncio.to_thread(self.store.delete_session, session.file_id)
                return resource_url(session.file_hash)

            missing = missing_chunks(set(self.store.uploaded_chunks(session.file_id)), session.total_chunks)
            if missing:
                raise MissingChunksError(
                    f"Missing {len(missing)} of {session.total_chunks} chunks: {missing[:20]}",
                    missing=missing,
                )

            tmp_path = await asyncio.to_thread(self.store.assemble, session.file_id, session.total_chunks)
            try:
                actual = await asyncio.to_thread(compute_file_hash, tmp_path)
                if actual != session.file_hash:
                    raise ChecksumMismatchError(
                        f"Assembled file hash {actual} does not match {session.file_hash} [file_id={session.file_id}]"
                    )
                stored = StoredFile(
                    file_hash=session.file_hash,
                    file_name=session.file_name,
                    mime_type=session.mime_type,
                    size=session.total_size,
                )
                await asyncio.to_thread(self.store.store_file, tmp_path, stored)
            finally:
                Path(tmp_path).unlink(missing_ok=True)

            await asyncio.to_thread(self.store.delete_session, session.file_id)
            logger.info(f"Upload assembled: {session.file_name} [file_id={session.file_id}]")
            return resource_url(session.file_hash)

    async def cancel(self, file_id: str) -> bool:
        """
        Discard the chunk state of an upload.

        Returns:
            True; cancelling an unknown file_id is not an error
        """
        if await asyncio.to_thread(self.store.delete_session, file_id):
            logger.info(f"Upload session discarded [file_id={file_id}]")
        return True

    def get_file(self, file_hash: str) -> Tuple[Path, StoredFile]:
        """
        Locate stored content.

        Raises:
            StoredFileNotFoundError: If no content is stored under file_hash
        """
        path = self.store.get_file_path(file_hash)
        meta = self.store.load_file_meta(file_hash)
        if not path.exists() or meta is None:
            raise StoredFileNotFoundError(f"No stored file with hash {file_hash}")
        return path, meta
