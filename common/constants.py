"""Project-wide constants (chunk sizes, hashing windows, retry policy, defaults)."""

DEFAULT_CHUNK_SIZE_BYTES: int = 2 * 1024 * 1024  # 2 MiB
DEFAULT_MAX_CONCURRENCY: int = 3

HASH_WINDOW_BYTES: int = 1 * 1024 * 1024  # 1 MiB
SMALL_FILE_HASH_THRESHOLD: int = 10 * 1024 * 1024  # below this the whole file is hashed at once
FILE_READ_PIECE_BYTES: int = 64 * 1024

# Per-chunk retry policy; not read from the user config file
MAX_CHUNK_ATTEMPTS: int = 3
RETRY_BACKOFF_BASE: float = 2
CHUNK_TIMEOUT_SECONDS: float = 60.0

DEFAULT_MIME_TYPE: str = "application/octet-stream"

UPLOAD_API_PREFIX: str = "/upload"
DEFAULT_SERVER_PORT: int = 8000
