"""Error taxonomy for the upload engine."""

from typing import Optional


class UploadError(Exception):
    """
    Base exception class for all upload errors.

    Carries the offending chunk index (when the failure is chunk-level) and,
    for HTTP failures, the status code and server error code.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        chunk_index: Optional[int] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.chunk_index = chunk_index
        self.status_code = status_code
        self.code = code

    def with_chunk(self, chunk_index: int) -> "UploadError":
        """Return the same error tagged with a chunk index."""
        self.chunk_index = chunk_index
        return self

    def __str__(self) -> str:
        if self.chunk_index is not None:
            return f"Chunk {self.chunk_index}: {self.message}"
        return self.message


class TransientNetworkError(UploadError):
    """
    Raised for timeouts, 5xx responses and dropped connections.
    """
    retryable = True


class ValidationError(UploadError):
    """
    Raised when the server rejects file or chunk metadata.
    """
    pass


class QuotaOrPermissionError(UploadError):
    """
    Raised for 4xx responses other than validation failures.
    """
    pass


class ServerMergeError(UploadError):
    """
    Raised when finalize fails after every chunk was stored.

    The chunks are safe on the server; only the assembly step needs retrying.
    """
    pass
