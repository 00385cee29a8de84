"""HTTP client for the upload server API."""

import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar, Union

import httpx

from common.constants import DEFAULT_MIME_TYPE, UPLOAD_API_PREFIX
from common.exceptions import (
    QuotaOrPermissionError,
    ServerMergeError,
    TransientNetworkError,
    UploadError,
    ValidationError,
)
from common.logging_config import get_logger
from common.types import (
    Chunk,
    ChunkAck,
    ExistsResult,
    FileDescriptor,
    FinalizeResult,
    UploadStatus,
)
from uploader.config import Config

logger = get_logger(__name__)

T = TypeVar("T")

ErrorHandler = Callable[[UploadError], None]

TRANSIENT_STATUS_CODES = {408, 429}
VALIDATION_STATUS_CODES = {400, 415, 422}


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class Failure:
    error: UploadError
    ok: bool = False


Result = Union[Success[T], Failure]


def classify_response(response: httpx.Response) -> UploadError:
    """
    Map an HTTP error response to the upload error taxonomy.

    Args:
        response: HTTP response with status >= 400

    Returns:
        UploadError subclass carrying status code, server code and detail
    """
    try:
        error_data = response.json()
        detail = error_data.get('detail', 'Unknown error')
        code = error_data.get('code', 'UNKNOWN')
    except (ValueError, AttributeError):
        detail = response.text or 'Unknown error'
        code = 'UNKNOWN'

    status_code = response.status_code
    message = f"{detail} (HTTP {status_code}, code {code})"

    if status_code >= 500 and status_code != 507:
        return TransientNetworkError(message, status_code=status_code, code=code)
    if status_code in TRANSIENT_STATUS_CODES:
        return TransientNetworkError(message, status_code=status_code, code=code)
    if status_code in VALIDATION_STATUS_CODES or code == 'VALIDATION_ERROR':
        return ValidationError(message, status_code=status_code, code=code)
    return QuotaOrPermissionError(message, status_code=status_code, code=code)


class UploadClient:
    """
    Async client for the upload API, one coroutine per server endpoint.

    No call raises for transport or server errors: each returns Success or
    Failure, and failures are passed to the per-call `on_error` handler (or
    the client default, which logs them).
    """

    def __init__(
        self,
        config: Config,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_error: Optional[ErrorHandler] = None,
    ):
        """
        Initialize upload client.

        Args:
            config: Configuration instance
            transport: Optional httpx transport (mock or ASGI transport in tests)
            on_error: Default failure handler for every call
        """
        self.config = config
        self.session = httpx.AsyncClient(
            base_url=config.get_base_url(),
            timeout=config.get_timeout(),
            transport=transport,
        )
        self._on_error = on_error or self._log_error
        logger.info(f"Initialized UploadClient [base_url={config.get_base_url()}]")

    async def __aenter__(self) -> "UploadClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session."""
        await self.session.aclose()

    @staticmethod
    def _log_error(error: UploadError) -> None:
        logger.warning(f"Upload API call failed: {type(error).__name__}: {error}")

    async def _request(self, method: str, endpoint: str, timeout: Optional[float] = None, **kwargs) -> httpx.Response:
        """
        Send one request and classify failures.

        Raises:
            TransientNetworkError: On timeouts, connection failures and 5xx
            ValidationError: On rejected metadata
            QuotaOrPermissionError: On other 4xx
        """
        request_id = str(uuid.uuid4())
        headers = kwargs.pop('headers', {})
        headers['X-Request-ID'] = request_id
        if timeout is not None:
            kwargs['timeout'] = timeout

        url = f"{UPLOAD_API_PREFIX}{endpoint}"
        logger.debug(f"Making request: {method} {url} [request_id={request_id}]")

        try:
            response = await self.session.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Request timed out: {method} {url}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Cannot reach upload server: {type(e).__name__}: {e}") from e

        logger.debug(
            f"Response received: {method} {url} status={response.status_code} [request_id={request_id}]"
        )

        if response.status_code >= 400:
            raise classify_response(response)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise TransientNetworkError(
                f"Malformed response body (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise TransientNetworkError(
                f"Unexpected response body (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _parse_fields(response: httpx.Response, build: Callable[[], T]) -> T:
        """Convert body fields, reporting bad field types as a malformed response."""
        try:
            return build()
        except (TypeError, ValueError) as e:
            raise TransientNetworkError(
                f"Malformed response fields (HTTP {response.status_code}): {e}",
                status_code=response.status_code,
            ) from e

    async def _call(self, operation: Callable[[], Awaitable[T]], on_error: Optional[ErrorHandler]) -> Result:
        try:
            value = await operation()
        except UploadError as e:
            handler = on_error or self._on_error
            handler(e)
            return Failure(e)
        return Success(value)

    async def check_exists(self, content_hash: str, on_error: Optional[ErrorHandler] = None) -> Result:
        """
        Ask whether content with this hash is already stored.

        Args:
            content_hash: Content hash of the whole file

        Returns:
            Success(ExistsResult) or Failure
        """
        async def operation() -> ExistsResult:
            response = await self._request('GET', '/check-file', params={'file_hash': content_hash})
            data = self._json(response)
            return ExistsResult(exists=bool(data.get('exists')), url=data.get('url'))

        return await self._call(operation, on_error)

    async def query_resume_state(self, file_id: str, on_error: Optional[ErrorHandler] = None) -> Result:
        """
        Fetch the chunk indices the server already holds for file_id.

        An unknown file_id is reported as an empty set, same as a fresh upload.

        Returns:
            Success(frozenset[int]) or Failure
        """
        async def operation() -> frozenset:
            try:
                response = await self._request('GET', f'/chunk-info/{file_id}')
            except QuotaOrPermissionError as e:
                if e.status_code == 404:
                    return frozenset()
                raise
            data = self._json(response)
            return self._parse_fields(
                response, lambda: frozenset(int(index) for index in data.get('uploaded_chunks') or [])
            )

        return await self._call(operation, on_error)

    async def upload_chunk(
        self,
        chunk: Chunk,
        data: bytes,
        descriptor: FileDescriptor,
        chunk_size: int,
        total_chunks: int,
        timeout: Optional[float] = None,
        on_error: Optional[ErrorHandler] = None,
    ) -> Result:
        """
        Upload a single chunk with the full file metadata.

        Args:
            chunk: Chunk being sent
            data: Chunk bytes
            descriptor: File descriptor
            chunk_size: Nominal chunk size of the layout
            total_chunks: Total number of chunks of the file
            timeout: Optional request timeout override

        Returns:
            Success(ChunkAck) or Failure
        """
        async def operation() -> ChunkAck:
            form = {
                'file_id': descriptor.file_id,
                'file_name': descriptor.file_name,
                'total_size': str(descriptor.total_size),
                'mime_type': descriptor.mime_type or DEFAULT_MIME_TYPE,
                'chunk_index': str(chunk.index),
                'chunk_size': str(chunk_size),
                'total_chunks': str(total_chunks),
                'file_hash': descriptor.content_hash,
            }
            files = {'file': (descriptor.file_name, data, 'application/octet-stream')}
            try:
                response = await self._request('POST', '/chunk', timeout=timeout, data=form, files=files)
                body = self._json(response)
            except UploadError as e:
                raise e.with_chunk(chunk.index)
            return ChunkAck(
                accepted=bool(body.get('accepted')),
                complete=bool(body.get('complete')),
                resource_url=body.get('resource_url'),
                message=body.get('message', ''),
            )

        return await self._call(operation, on_error)

    async def finalize(
        self,
        descriptor: FileDescriptor,
        total_chunks: int,
        on_error: Optional[ErrorHandler] = None,
    ) -> Result:
        """
        Ask the server to assemble the stored chunks.

        Any failure is reported as ServerMergeError, chained to the
        underlying error.

        Returns:
            Success(FinalizeResult) or Failure(ServerMergeError)
        """
        async def operation() -> FinalizeResult:
            payload = {
                'file_id': descriptor.file_id,
                'file_name': descriptor.file_name,
                'total_chunks': total_chunks,
                'file_hash': descriptor.content_hash,
                'total_size': descriptor.total_size,
                'mime_type': descriptor.mime_type or DEFAULT_MIME_TYPE,
            }
            try:
                response = await self._request('POST', '/complete-file', json=payload)
                data = self._json(response)
            except UploadError as e:
                raise ServerMergeError(
                    f"Finalize failed: {e.message}",
                    status_code=e.status_code,
                    code=e.code,
                ) from e

            result = FinalizeResult(
                success=bool(data.get('success')),
                resource_url=data.get('resource_url') or '',
                message=data.get('message', ''),
            )
            if not result.success or not result.resource_url:
                raise ServerMergeError(f"Finalize failed: {result.message or 'server returned no resource URL'}")
            return result

        return await self._call(operation, on_error)

    async def cancel(self, file_id: str, on_error: Optional[ErrorHandler] = None) -> Result:
        """
        Discard the server-side state of an upload.

        Returns:
            Success(bool) or Failure
        """
        async def operation() -> bool:
            response = await self._request('DELETE', f'/cancel/{file_id}')
            return bool(self._json(response).get('success'))

        return await self._call(operation, on_error)

    async def status(self, file_id: str, on_error: Optional[ErrorHandler] = None) -> Result:
        """
        Query the server-side status of an upload.

        Returns:
            Success(UploadStatus) or Failure
        """
        async def operation() -> UploadStatus:
            response = await self._request('GET', f'/status/{file_id}')
            data = self._json(response)
            return self._parse_fields(response, lambda: UploadStatus(
                uploaded_chunks=frozenset(int(i) for i in data.get('uploaded_chunks') or []),
                total_chunks=int(data.get('total_chunks', 0)),
                is_complete=bool(data.get('is_complete')),
            ))

        return await self._call(operation, on_error)

    async def health(self, on_error: Optional[ErrorHandler] = None) -> Result:
        """
        Check that the upload server is reachable.

        Returns:
            Success(bool) or Failure
        """
        async def operation() -> bool:
            response = await self._request('GET', '/health', timeout=5.0)
            return self._json(response).get('status') == 'ok'

        return await self._call(operation, on_error)
