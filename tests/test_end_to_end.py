"""End-to-end tests: uploader client against the receiver app over ASGI."""

import httpx
import pytest

from common.checksum import compute_file_hash
from common.chunk_math import chunk_range
from common.types import Completed
from receiver.main import app
from receiver.routes.upload_routes import get_upload_service
from receiver.services.upload_service import UploadService
from uploader.models import CompleteEvent, ProgressEvent, UploadOptions
from uploader.session import build_descriptor, start_upload
from uploader.sources import BytesSource, FileSource
from uploader.upload_client import UploadClient

MB = 1_000_000
OPTIONS = UploadOptions(chunk_size=2 * MB, max_concurrency=3)


class RecordingTransport(httpx.ASGITransport):
    """ASGI transport that records the method and path of every request."""

    def __init__(self, app):
        super().__init__(app=app)
        self.requests = []

    async def handle_async_request(self, request):
        self.requests.append((request.method, request.url.path))
        return await super().handle_async_request(request)

    def count(self, method, path):
        return self.requests.count((method, path))


@pytest.fixture
def use_service():
    """Route receiver requests to the given UploadService."""
    def install(service: UploadService) -> None:
        app.dependency_overrides[get_upload_service] = lambda: service

    yield install
    app.dependency_overrides.clear()


@pytest.fixture
def transport():
    return RecordingTransport(app)


@pytest.mark.asyncio
async def test_upload_then_download(temp_config, sample_file, upload_service, use_service, transport):
    """Test a fresh upload stores the exact file bytes."""
    use_service(upload_service)

    async with UploadClient(temp_config, transport=transport) as client:
        handle = start_upload(sample_file, OPTIONS, client=client)
        events = [event async for event in handle]
        outcome = await handle.wait()

        assert isinstance(outcome, Completed)
        assert outcome.deduplicated is False
        download = await client.session.get(outcome.resource_url)

    assert download.content == sample_file.read_bytes()
    assert isinstance(events[-1], CompleteEvent)
    assert events[-2].snapshot.bytes_uploaded == 10 * MB
    assert transport.count('POST', '/upload/chunk') == 5
    assert transport.count('POST', '/upload/complete-file') == 1


@pytest.mark.asyncio
async def test_second_upload_is_deduplicated(temp_config, sample_file, upload_service, use_service, transport):
    """Test uploading identical content twice transfers it once."""
    use_service(upload_service)

    async with UploadClient(temp_config, transport=transport) as client:
        first = await start_upload(sample_file, OPTIONS, client=client).wait()
        chunk_posts = transport.count('POST', '/upload/chunk')
        second = await start_upload(
            BytesSource(sample_file.read_bytes(), name='copy.bin'), OPTIONS, client=client
        ).wait()

    assert second == Completed(resource_url=first.resource_url, deduplicated=True)
    assert transport.count('POST', '/upload/chunk') == chunk_posts


@pytest.mark.asyncio
async def test_interrupted_upload_resumes(temp_config, sample_file, upload_service, use_service, transport):
    """Test a later attempt only sends the chunks the server is missing."""
    use_service(upload_service)
    source = FileSource(sample_file)
    descriptor = build_descriptor(source, compute_file_hash(sample_file), OPTIONS.chunk_size)

    async with UploadClient(temp_config, transport=transport) as client:
        for index in (0, 1):
            chunk = chunk_range(index, OPTIONS.chunk_size, source.size)
            result = await client.upload_chunk(
                chunk, source.read(chunk.byte_start, chunk.byte_end), descriptor, OPTIONS.chunk_size, 5
            )
            assert result.ok

        handle = start_upload(source, OPTIONS, client=client)
        events = [event async for event in handle]
        outcome = await handle.wait()

    assert isinstance(outcome, Completed)
    assert transport.count('POST', '/upload/chunk') == 2 + 3
    first_progress = next(e for e in events if isinstance(e, ProgressEvent))
    assert first_progress.snapshot.uploaded_chunk_indices == frozenset({0, 1})
    assert upload_service.store.get_file_path(descriptor.content_hash).read_bytes() == sample_file.read_bytes()


@pytest.mark.asyncio
async def test_auto_assembly_skips_finalize(temp_config, chunk_store, use_service, transport):
    """Test server-side assembly on the last chunk ends the upload without finalize."""
    use_service(UploadService(store=chunk_store, auto_assemble=True))
    data = bytes(range(256)) * 4000

    async with UploadClient(temp_config, transport=transport) as client:
        outcome = await start_upload(
            BytesSource(data), UploadOptions(chunk_size=100_000, max_concurrency=2), client=client
        ).wait()

    assert isinstance(outcome, Completed)
    assert transport.count('POST', '/upload/chunk') == 11
    assert transport.count('POST', '/upload/complete-file') == 0


@pytest.mark.asyncio
async def test_cancel_with_purge_clears_server(temp_config, chunk_store, use_service, transport):
    use_service(UploadService(store=chunk_store))

    async with UploadClient(temp_config, transport=transport) as client:
        handle = start_upload(
            BytesSource(b'p' * (10 * MB)), UploadOptions(chunk_size=2 * MB, max_concurrency=1), client=client
        )
        async for event in handle:
            if isinstance(event, ProgressEvent) and event.snapshot.uploaded_chunk_indices:
                handle.cancel(purge=True)
        await handle.wait()
        status = await client.status(handle.descriptor.file_id)

    assert transport.count('DELETE', f'/upload/cancel/{handle.descriptor.file_id}') == 1
    assert not status.ok
    assert status.error.status_code == 404


@pytest.mark.asyncio
async def test_health(temp_config, upload_service, use_service, transport):
    use_service(upload_service)

    async with UploadClient(temp_config, transport=transport) as client:
        result = await client.health()

    assert result.ok and result.value is True
