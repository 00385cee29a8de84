"""Chunked upload API routes."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse

from common.constants import DEFAULT_MIME_TYPE, UPLOAD_API_PREFIX
from receiver.schemas.common import HealthResponse
from receiver.schemas.upload import (
    CancelUploadResponse,
    ChunkInfoResponse,
    ChunkUploadResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    FileExistsResponse
)
from receiver.services.upload_service import UploadService
from receiver.storage import SessionMeta

router = APIRouter(prefix=UPLOAD_API_PREFIX, tags=["Upload"])

_upload_service: Optional[UploadService] = None


def get_upload_service() -> UploadService:
    """Dependency providing the process-wide upload service."""
    global _upload_service
    if _upload_service is None:
        _upload_service = UploadService()
    return _upload_service


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint for clients and Docker healthcheck.
    """
    return HealthResponse(status="ok")


@router.get("/check-file", response_model=FileExistsResponse)
async def check_file(
    file_hash: str = Query(...),
    service: UploadService = Depends(get_upload_service)
):
    """
    Check whether content with this hash is already stored.

    Parameters:
        - file_hash: Content hash of the whole file

    Returns:
        - exists: True if the content is stored
        - url: Resource URL when it exists

    Raises:
        - 400: Malformed hash
    """
    exists, url = service.check_file(file_hash)
    return FileExistsResponse(exists=exists, url=url)


@router.get("/chunk-info/{file_id}", response_model=ChunkInfoResponse)
async def chunk_info(file_id: str, service: UploadService = Depends(get_upload_service)):
    """
    List chunks already received for an upload, for resuming.
    """
    uploaded, total, complete = service.chunk_info(file_id)
    return ChunkInfoResponse(uploaded_chunks=uploaded, total_chunks=total, is_complete=complete)


@router.post("/chunk", response_model=ChunkUploadResponse)
async def upload_chunk(
    file: UploadFile = File(...),
    file_id: str = Form(...),
    file_name: str = Form(...),
    total_size: int = Form(...),
    mime_type: str = Form(DEFAULT_MIME_TYPE),
    chunk_index: int = Form(...),
    chunk_size: int = Form(...),
    total_chunks: int = Form(...),
    file_hash: str = Form(...),
    service: UploadService = Depends(get_upload_service)
):
    """
    Upload one chunk with the metadata of its file.

    Re-sending a chunk replaces the stored copy and is acknowledged again.

    Returns:
        - accepted: True when the chunk is stored
        - complete: True when the file is already assembled
        - resource_url: Resource URL when complete

    Raises:
        - 400: Invalid chunk or metadata
        - 413: File too large
        - 415: Mime type not accepted
    """
    data = await file.read()
    meta = SessionMeta(
        file_id=file_id,
        file_name=file_name,
        total_size=total_size,
        mime_type=mime_type,
        chunk_size=chunk_size,
        total_chunks=total_chunks,
        file_hash=file_hash,
    )
    complete, url, message = await service.receive_chunk(meta, chunk_index, data)
    return ChunkUploadResponse(accepted=True, complete=complete, resource_url=url, message=message)


@router.post("/complete-file", response_model=CompleteUploadResponse)
async def complete_file(
    request: CompleteUploadRequest,
    service: UploadService = Depends(get_upload_service)
):
    """
    Assemble the received chunks into the final file.

    Raises:
        - 404: Unknown upload session
        - 409: Chunks missing
        - 422: Assembled content does not match file_hash
    """
    url = await service.complete(
        file_id=request.file_id,
        file_name=request.file_name,
        total_chunks=request.total_chunks,
        file_hash=request.file_hash,
        total_size=request.total_size,
        mime_type=request.mime_type,
    )
    return CompleteUploadResponse(success=True, resource_url=url, message="File assembled")


@router.delete("/cancel/{file_id}", response_model=CancelUploadResponse)
async def cancel_upload(file_id: str, service: UploadService = Depends(get_upload_service)):
    """
    Discard the chunks received for an upload.
    """
    return CancelUploadResponse(success=await service.cancel(file_id))


@router.get("/status/{file_id}", response_model=ChunkInfoResponse)
async def upload_status(file_id: str, service: UploadService = Depends(get_upload_service)):
    """
    Report the state of an upload session.

    Raises:
        - 404: Unknown upload session
    """
    uploaded, total, complete = service.status(file_id)
    return ChunkInfoResponse(uploaded_chunks=uploaded, total_chunks=total, is_complete=complete)


@router.get("/files/{file_hash}")
async def download_file(file_hash: str, service: UploadService = Depends(get_upload_service)):
    """
    Download an assembled file.

    Raises:
        - 404: No file stored under file_hash
    """
    path, meta = service.get_file(file_hash)
    return FileResponse(path, media_type=meta.mime_type, filename=meta.file_name)
