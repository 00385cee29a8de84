"""Configuration settings for the upload receiver."""

import os

from common.constants import DEFAULT_SERVER_PORT


UPLOAD_STORAGE_PATH = os.environ.get("UPLOAD_STORAGE_PATH", "/app/data/uploads")

UPLOAD_SERVER_HOST = os.environ.get("UPLOAD_SERVER_HOST", "0.0.0.0")

UPLOAD_SERVER_PORT = int(os.environ.get("UPLOAD_SERVER_PORT", str(DEFAULT_SERVER_PORT)))

# 0 disables the limit
UPLOAD_MAX_FILE_SIZE = int(os.environ.get("UPLOAD_MAX_FILE_SIZE", "0"))

# Comma-separated; empty accepts every type. A trailing "/*" matches a whole family.
UPLOAD_ALLOWED_MIME_TYPES = [
    t.strip() for t in os.environ.get("UPLOAD_ALLOWED_MIME_TYPES", "").split(",") if t.strip()
]

# Assemble as soon as the last missing chunk arrives instead of waiting for complete-file
UPLOAD_AUTO_ASSEMBLE = os.environ.get("UPLOAD_AUTO_ASSEMBLE", "false").lower() in ("1", "true", "yes")
