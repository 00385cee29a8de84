"""Entry point for the upload receiver service."""

import os
import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from receiver import config
from receiver.exceptions import (
    ReceiverException,
    UploadSessionNotFoundError,
    StoredFileNotFoundError,
    InvalidChunkError,
    UnsupportedMediaTypeError,
    FileTooLargeError,
    MissingChunksError,
    ChecksumMismatchError
)
from receiver.routes.upload_routes import router as upload_router
from receiver.storage import ChunkStore

logger = setup_logging('receiver', log_level=os.getenv('LOG_LEVEL', 'INFO'))
setup_logging('common', log_level=os.getenv('LOG_LEVEL', 'INFO'))

app = FastAPI(
    title="Chunkferry Upload Receiver",
    description="Resumable chunked upload server",
    version="1.0.0"
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(f"Request started: {request.method} {request.url.path} [request_id={request_id}]")

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Prepare the storage directories.
    """
    logger.info("Upload receiver starting up...")
    ChunkStore(config.UPLOAD_STORAGE_PATH).ensure_directories()
    logger.info(f"Storage ready at {config.UPLOAD_STORAGE_PATH} [auto_assemble={config.UPLOAD_AUTO_ASSEMBLE}]")


@app.exception_handler(UploadSessionNotFoundError)
async def session_not_found_handler(request: Request, exc: UploadSessionNotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Upload session not found: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc), "code": "UPLOAD_NOT_FOUND"}
    )


@app.exception_handler(StoredFileNotFoundError)
async def stored_file_not_found_handler(request: Request, exc: StoredFileNotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Stored file not found: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc), "code": "FILE_NOT_FOUND"}
    )


@app.exception_handler(InvalidChunkError)
async def invalid_chunk_handler(request: Request, exc: InvalidChunkError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Invalid chunk error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "code": "VALIDATION_ERROR"}
    )


@app.exception_handler(UnsupportedMediaTypeError)
async def unsupported_media_type_handler(request: Request, exc: UnsupportedMediaTypeError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Unsupported media type: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
        content={"detail": str(exc), "code": "UNSUPPORTED_MEDIA_TYPE"}
    )


@app.exception_handler(FileTooLargeError)
async def file_too_large_handler(request: Request, exc: FileTooLargeError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"File too large: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=413,
        content={"detail": str(exc), "code": "FILE_TOO_LARGE"}
    )


@app.exception_handler(MissingChunksError)
async def missing_chunks_handler(request: Request, exc: MissingChunksError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Missing chunks: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "code": "MISSING_CHUNKS", "missing_chunks": exc.missing}
    )


@app.exception_handler(ChecksumMismatchError)
async def checksum_mismatch_handler(request: Request, exc: ChecksumMismatchError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Checksum mismatch error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "code": "CHECKSUM_MISMATCH"}
    )


@app.exception_handler(ReceiverException)
async def receiver_exception_handler(request: Request, exc: ReceiverException):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Receiver exception: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "code": "INTERNAL_ERROR"}
    )


app.include_router(upload_router)


@app.get("/")
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "Chunkferry Upload Receiver", "status": "running"}


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "receiver.main:app",
        host=config.UPLOAD_SERVER_HOST,
        port=config.UPLOAD_SERVER_PORT
    )


if __name__ == "__main__":
    main()
