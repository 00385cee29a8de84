"""Caller-facing upload API: one attempt run on a background task, reported as events."""

import asyncio
import functools
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar, Union

from common.checksum import compute_content_hash
from common.chunk_math import build_snapshot, chunk_count
from common.constants import HASH_WINDOW_BYTES
from common.exceptions import ValidationError
from common.logging_config import get_logger
from common.types import (
    Cancelled,
    Completed,
    Failed,
    FileDescriptor,
    ProgressSnapshot,
    TransferOutcome,
)
from uploader.config import Config
from uploader.models import (
    AttemptState,
    CancelledEvent,
    CompleteEvent,
    ErrorEvent,
    HashProgressEvent,
    ProgressEvent,
    UploadEvent,
    UploadOptions,
)
from uploader.scheduler import ChunkScheduler
from uploader.sources import ChunkSource, FileSource
from uploader.upload_client import UploadClient

logger = get_logger(__name__)

T = TypeVar("T")


class _CancelRequested(Exception):
    pass


def make_file_id(content_hash: str, chunk_size: int) -> str:
    """
    Derive the server-side session id of an upload.

    The same content with the same chunk layout always maps to the same id,
    so a later attempt resumes; a different layout never reuses chunks.
    """
    return f"{content_hash[:32]}-{chunk_size}"


def build_descriptor(source: ChunkSource, content_hash: str, chunk_size: int) -> FileDescriptor:
    return FileDescriptor(
        file_id=make_file_id(content_hash, chunk_size),
        file_name=source.name,
        total_size=source.size,
        mime_type=source.mime_type,
        content_hash=content_hash,
    )


class UploadHandle:
    """
    Handle on a running upload attempt.

    Iterate it (`async for event in handle`) to receive HashProgressEvent
    and ProgressEvent messages followed by exactly one CompleteEvent, ErrorEvent or
    CancelledEvent. Events are immutable; nothing else is shared with the
    background task.
    """

    def __init__(
        self,
        source: ChunkSource,
        options: UploadOptions,
        client: UploadClient,
        owns_client: bool = False,
        hash_window: int = HASH_WINDOW_BYTES,
        **scheduler_kwargs,
    ):
        self.source = source
        self.options = options
        self.client = client
        self.descriptor: Optional[FileDescriptor] = None
        self.outcome: Optional[TransferOutcome] = None
        self._owns_client = owns_client
        self._hash_window = hash_window
        self._scheduler_kwargs = scheduler_kwargs
        self._state = AttemptState.CHECKING_DEDUP
        self._events: asyncio.Queue = asyncio.Queue()
        self._cancel_requested = asyncio.Event()
        self._purge = False
        self._scheduler: Optional[ChunkScheduler] = None
        self._last_snapshot: Optional[ProgressSnapshot] = None
        self._task = asyncio.create_task(self._run(), name=f"upload-{source.name}")

    @property
    def state(self) -> AttemptState:
        return self._state

    @property
    def last_snapshot(self) -> Optional[ProgressSnapshot]:
        return self._last_snapshot

    def cancel(self, purge: bool = False) -> None:
        """
        Cancel the attempt.

        Admission of new chunks stops immediately and in-flight chunk
        requests are abandoned. With purge=True the server is also asked to
        discard the chunks received so far; otherwise a later attempt resumes.
        """
        if self._state.is_terminal:
            return
        self._purge = self._purge or purge
        self._cancel_requested.set()
        if self._scheduler is not None:
            self._scheduler.cancel()

    async def wait(self) -> TransferOutcome:
        """Wait for the attempt (and any cleanup) to finish and return its outcome."""
        await self._task
        return self.outcome

    def __aiter__(self) -> AsyncIterator[UploadEvent]:
        return self._iter_events()

    async def _iter_events(self) -> AsyncIterator[UploadEvent]:
        while True:
            event = await self._events.get()
            yield event
            if not isinstance(event, (HashProgressEvent, ProgressEvent)):
                return

    def _set_state(self, state: AttemptState) -> None:
        if state != self._state:
            logger.debug(f"Upload state {self._state.value} -> {state.value} [file={self.source.name}]")
            self._state = state

    def _emit_hash_progress(self, loop: asyncio.AbstractEventLoop, percent: int) -> None:
        # Runs on the hashing thread
        loop.call_soon_threadsafe(self._events.put_nowait, HashProgressEvent(percent=percent))

    def _emit_progress(self, snapshot: ProgressSnapshot) -> None:
        self._last_snapshot = snapshot
        self._events.put_nowait(ProgressEvent(snapshot=snapshot))

    async def _race(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless cancellation is requested first."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            await asyncio.gather(waiter, return_exceptions=True)

        if self._cancel_requested.is_set():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise _CancelRequested()
        return task.result()

    async def _run(self) -> None:
        try:
            outcome = await self._attempt()
        except _CancelRequested:
            outcome = Cancelled()
        except asyncio.CancelledError:
            self._finish(Cancelled())
            await self._cleanup()
            raise
        except Exception as e:
            logger.error(f"Unexpected error during upload of {self.source.name}: {e}", exc_info=True)
            outcome = Failed(reason=f"Unexpected error: {e}")

        self._finish(outcome)
        await self._cleanup()

    def _finish(self, outcome: TransferOutcome) -> None:
        self.outcome = outcome
        if isinstance(outcome, Completed):
            self._set_state(AttemptState.COMPLETED)
            logger.info(f"Upload complete: {self.source.name} -> {outcome.resource_url}")
            self._events.put_nowait(
                CompleteEvent(resource_url=outcome.resource_url, deduplicated=outcome.deduplicated)
            )
        elif isinstance(outcome, Failed):
            self._set_state(AttemptState.FAILED)
            logger.error(f"Upload failed: {self.source.name}: {outcome.reason}")
            self._events.put_nowait(
                ErrorEvent(reason=outcome.reason, chunk_index=outcome.chunk_index, error=outcome.error)
            )
        else:
            self._set_state(AttemptState.CANCELLED)
            logger.info(f"Upload cancelled: {self.source.name}")
            self._events.put_nowait(CancelledEvent(reason=outcome.reason))

    async def _cleanup(self) -> None:
        try:
            if self._purge and self.descriptor is not None and isinstance(self.outcome, Cancelled):
                logger.info(f"Discarding server-side chunks [file_id={self.descriptor.file_id}]")
                await self.client.cancel(self.descriptor.file_id)
        finally:
            if self._owns_client:
                await self.client.close()

    async def _attempt(self) -> TransferOutcome:
        size = self.source.size
        chunk_size = self.options.chunk_size

        if size <= 0:
            return Failed(reason=f"File is empty: {self.source.name}", error=ValidationError("File is empty"))

        self._set_state(AttemptState.CHECKING_DEDUP)
        loop = asyncio.get_running_loop()
        content_hash = await self._race(asyncio.to_thread(
            compute_content_hash, self.source.read, size, self._hash_window,
            functools.partial(self._emit_hash_progress, loop),
        ))
        self.descriptor = descriptor = build_descriptor(self.source, content_hash, chunk_size)
        logger.info(
            f"Starting upload of {descriptor.file_name} ({size} bytes, "
            f"{chunk_count(size, chunk_size)} chunks) [file_id={descriptor.file_id}]"
        )

        exists = await self._race(self.client.check_exists(content_hash))
        if not exists.ok:
            return Failed(reason=str(exists.error), error=exists.error)
        if exists.value.exists and exists.value.url:
            logger.info(f"Content already stored, skipping transfer [file_id={descriptor.file_id}]")
            self._emit_progress(build_snapshot(range(chunk_count(size, chunk_size)), chunk_size, size))
            return Completed(resource_url=exists.value.url, deduplicated=True)

        self._set_state(AttemptState.RESUMING)
        resume = await self._race(self.client.query_resume_state(descriptor.file_id))
        if not resume.ok:
            return Failed(reason=str(resume.error), error=resume.error)
        if resume.value:
            logger.info(f"Resuming with {len(resume.value)} chunks already on server [file_id={descriptor.file_id}]")

        self._scheduler = ChunkScheduler(
            self.client,
            self.source,
            descriptor,
            chunk_size,
            uploaded=resume.value,
            max_concurrency=self.options.max_concurrency,
            chunk_timeout=self.options.chunk_timeout,
            on_progress=self._emit_progress,
            on_state=self._set_state,
            **self._scheduler_kwargs,
        )
        if self._cancel_requested.is_set():
            self._scheduler.cancel()
        return await self._scheduler.run()


def start_upload(
    source: Union[ChunkSource, str, Path],
    options: Optional[UploadOptions] = None,
    client: Optional[UploadClient] = None,
    config: Optional[Config] = None,
    **kwargs,
) -> UploadHandle:
    """
    Start uploading `source` in the background.

    Must be called from a running event loop.

    Args:
        source: ChunkSource, or a path to a file
        options: Chunk size, concurrency and timeout; defaults come from config
        client: UploadClient to use; one is created (and closed) when omitted
        config: Configuration used for defaults and for a created client
        **kwargs: Extra scheduler/handle settings (hash_window, sleep, backoff_base, max_attempts)

    Returns:
        UploadHandle streaming the attempt's events
    """
    if isinstance(source, (str, Path)):
        source = FileSource(source)
    if config is None and (client is None or options is None):
        config = client.config if client is not None else Config()
    if options is None:
        options = UploadOptions(**config.get_upload_defaults())

    owns_client = client is None
    if client is None:
        client = UploadClient(config)

    return UploadHandle(source, options, client, owns_client=owns_client, **kwargs)


def upload_file(
    path: Union[str, Path],
    options: Optional[UploadOptions] = None,
    config: Optional[Config] = None,
    on_event: Optional[Callable[[UploadEvent], None]] = None,
) -> TransferOutcome:
    """
    Upload one file and block until the attempt finishes.

    Args:
        path: File to upload
        options: Upload options
        config: Configuration
        on_event: Optional callback receiving every event

    Returns:
        Completed, Failed or Cancelled
    """
    async def _main() -> TransferOutcome:
        handle = start_upload(path, options, config=config)
        async for event in handle:
            if on_event:
                on_event(event)
        return await handle.wait()

    return asyncio.run(_main())
