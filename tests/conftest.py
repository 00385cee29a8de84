"""Shared pytest fixtures for all tests."""

import asyncio

import pytest

from common.exceptions import UploadError
from common.types import ChunkAck, ExistsResult, FileDescriptor, FinalizeResult
from receiver.services.upload_service import UploadService
from receiver.storage import ChunkStore
from uploader.config import Config
from uploader.upload_client import Failure, Success


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .chunkferry directory
    """
    config_dir = tmp_path / '.chunkferry'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a 10 MB file for upload tests.

    Returns:
        Path to sample binary file
    """
    file_path = tmp_path / 'sample.bin'
    file_path.write_bytes(bytes(range(256)) * (10_000_000 // 256) + b'\x00' * (10_000_000 % 256))
    return file_path


@pytest.fixture
def descriptor_10mb():
    """Descriptor of a 10 MB file uploaded in 2 MB chunks."""
    return FileDescriptor(
        file_id='a' * 32 + '-2000000',
        file_name='sample.bin',
        total_size=10_000_000,
        mime_type='application/octet-stream',
        content_hash='a' * 64,
    )


class FakeUploadClient:
    """
    In-memory stand-in for UploadClient.

    `chunk_script` maps a chunk index to the outcomes of its successive
    upload calls: an UploadError instance fails that call, a ChunkAck is
    returned as-is. Calls past the end of a script succeed.
    """

    def __init__(
        self,
        exists=None,
        resumed=frozenset(),
        chunk_script=None,
        finalize_result=None,
        delay=0.0,
        chunk_delays=None,
    ):
        self.exists = exists or ExistsResult(exists=False)
        self.resumed = frozenset(resumed)
        self.chunk_script = {index: list(outcomes) for index, outcomes in (chunk_script or {}).items()}
        self.finalize_result = finalize_result
        self.delay = delay
        self.chunk_delays = chunk_delays or {}
        self.calls = []
        self.finalize_calls = 0
        self.cancel_calls = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.closed = False

    async def check_exists(self, content_hash, on_error=None):
        if isinstance(self.exists, UploadError):
            return Failure(self.exists)
        return Success(self.exists)

    async def query_resume_state(self, file_id, on_error=None):
        return Success(self.resumed)

    async def upload_chunk(self, chunk, data, descriptor, chunk_size, total_chunks, timeout=None, on_error=None):
        self.calls.append(chunk.index)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.chunk_delays.get(chunk.index, self.delay))
            script = self.chunk_script.get(chunk.index)
            if script:
                outcome = script.pop(0)
                if isinstance(outcome, UploadError):
                    return Failure(outcome.with_chunk(chunk.index))
                return Success(outcome)
            return Success(ChunkAck(accepted=True))
        finally:
            self.in_flight -= 1

    async def finalize(self, descriptor, total_chunks, on_error=None):
        self.finalize_calls += 1
        if self.finalize_result is not None:
            return self.finalize_result
        return Success(FinalizeResult(success=True, resource_url=f"/upload/files/{descriptor.content_hash}"))

    async def cancel(self, file_id, on_error=None):
        self.cancel_calls.append(file_id)
        return Success(True)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_client_factory():
    """Factory for FakeUploadClient instances."""
    return FakeUploadClient


@pytest.fixture
def no_sleep():
    """Backoff sleep replacement that records requested delays."""
    delays = []

    async def sleep(delay):
        delays.append(delay)

    sleep.delays = delays
    return sleep


@pytest.fixture
def chunk_store(tmp_path):
    """ChunkStore rooted in a temporary directory."""
    store = ChunkStore(tmp_path / 'storage')
    store.ensure_directories()
    return store


@pytest.fixture
def upload_service(chunk_store):
    """UploadService over temporary storage with default limits."""
    return UploadService(store=chunk_store, auto_assemble=False, max_file_size=0, allowed_mime_types=[])
