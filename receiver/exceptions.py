"""Custom exception classes for the upload receiver."""


class ReceiverException(Exception):
    """
    Base exception class for all receiver errors.
    """
    pass


class UploadSessionNotFoundError(ReceiverException):
    """
    Raised when no chunks have been received for a file_id.
    """
    pass


class InvalidChunkError(ReceiverException):
    """
    Raised when chunk data or metadata is malformed or conflicts with the session.
    """
    pass


class UnsupportedMediaTypeError(ReceiverException):
    """
    Raised when the file's mime type is not on the allow-list.
    """
    pass


class FileTooLargeError(ReceiverException):
    """
    Raised when the declared file size exceeds the configured maximum.
    """
    pass


class MissingChunksError(ReceiverException):
    """
    Raised when complete-file is requested before every chunk is stored.
    """

    def __init__(self, message: str, missing: list):
        super().__init__(message)
        self.missing = missing


class ChecksumMismatchError(ReceiverException):
    """
    Raised when the assembled file does not match the declared content hash.
    """
    pass


class StoredFileNotFoundError(ReceiverException):
    """
    Raised when no assembled file exists for a content hash.
    """
    pass
