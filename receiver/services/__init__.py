"""Service layer for business logic."""

from receiver.services.upload_service import UploadService

__all__ = [
    "UploadService",
]
