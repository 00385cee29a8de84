"""Bounded-concurrency chunk scheduler with per-chunk retry and backoff."""

import asyncio
from collections import deque
from typing import AbstractSet, Awaitable, Callable, Dict, Optional, Tuple

from common.chunk_math import build_snapshot, chunk_count, chunk_range, missing_chunks
from common.constants import (
    CHUNK_TIMEOUT_SECONDS,
    DEFAULT_MAX_CONCURRENCY,
    MAX_CHUNK_ATTEMPTS,
    RETRY_BACKOFF_BASE,
)
from common.exceptions import TransientNetworkError, UploadError, ValidationError
from common.logging_config import get_logger
from common.types import (
    Cancelled,
    ChunkAck,
    Completed,
    Failed,
    FileDescriptor,
    ProgressSnapshot,
    TransferOutcome,
)
from uploader.models import AttemptState, ChunkState, ChunkTransfer
from uploader.sources import ChunkSource

logger = get_logger(__name__)

ChunkResult = Tuple[Optional[ChunkAck], Optional[UploadError]]


class ChunkScheduler:
    """
    Drives the missing chunks of one file through the upload client.

    A single loop owns all shared state (the completed set and the in-flight
    set). Chunk tasks report back only through their own result. At most
    max_concurrency chunk uploads are in flight at any time.

    The client must provide coroutines `upload_chunk(...)` and
    `finalize(...)` returning Success/Failure results (see UploadClient).
    """

    def __init__(
        self,
        client,
        source: ChunkSource,
        descriptor: FileDescriptor,
        chunk_size: int,
        uploaded: AbstractSet[int] = frozenset(),
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
        on_state: Optional[Callable[[AttemptState], None]] = None,
        chunk_timeout: float = CHUNK_TIMEOUT_SECONDS,
        max_attempts: int = MAX_CHUNK_ATTEMPTS,
        backoff_base: float = RETRY_BACKOFF_BASE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {chunk_size}")
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        self.client = client
        self.source = source
        self.descriptor = descriptor
        self.chunk_size = chunk_size
        self.max_concurrency = max_concurrency
        self.chunk_timeout = chunk_timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._on_progress = on_progress
        self._on_state = on_state

        self.total_chunks = chunk_count(descriptor.total_size, chunk_size)
        self.resumed = frozenset(i for i in uploaded if 0 <= i < self.total_chunks)
        self.completed: set = set()
        self.transfers: Dict[int, ChunkTransfer] = {
            index: ChunkTransfer(
                chunk=chunk_range(index, chunk_size, descriptor.total_size),
                state=ChunkState.UPLOADED if index in self.resumed else ChunkState.PENDING,
            )
            for index in range(self.total_chunks)
        }
        self.peak_in_flight = 0

        self._in_flight: Dict[asyncio.Task, int] = {}
        self._cancel_event = asyncio.Event()
        self._started = False

    @property
    def uploaded(self) -> frozenset:
        """Resumed chunks plus chunks completed in this attempt."""
        return self.resumed | frozenset(self.completed)

    def snapshot(self) -> ProgressSnapshot:
        return build_snapshot(self.uploaded, self.chunk_size, self.descriptor.total_size)

    def cancel(self) -> None:
        """Stop admitting chunks and abandon the ones in flight."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _emit_progress(self) -> None:
        if self._on_progress:
            self._on_progress(self.snapshot())

    def _set_state(self, state: AttemptState) -> None:
        if self._on_state:
            self._on_state(state)

    async def run(self) -> TransferOutcome:
        """
        Upload every missing chunk, then finalize.

        Returns:
            Completed, Failed or Cancelled
        """
        if self._started:
            raise RuntimeError("ChunkScheduler.run() may only be called once")
        self._started = True

        file_id = self.descriptor.file_id
        pending = deque(missing_chunks(self.resumed, self.total_chunks))
        logger.info(
            f"Scheduling {len(pending)}/{self.total_chunks} chunks "
            f"[file_id={file_id}] [max_concurrency={self.max_concurrency}]"
        )

        self._set_state(AttemptState.SCHEDULING)
        self._emit_progress()

        failure: Optional[UploadError] = None
        early_url: Optional[str] = None
        cancel_waiter = asyncio.ensure_future(self._cancel_event.wait())

        try:
            while True:
                while (
                    pending
                    and len(self._in_flight) < self.max_concurrency
                    and failure is None
                    and not self.cancelled
                ):
                    self._admit(pending.popleft())

                if not self._in_flight:
                    break

                done, _ = await asyncio.wait(
                    set(self._in_flight) | {cancel_waiter},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if cancel_waiter in done:
                    logger.info(f"Upload cancelled, abandoning {len(self._in_flight)} in-flight chunks [file_id={file_id}]")
                    await self._abandon()
                    return Cancelled()

                for task in done:
                    index = self._in_flight.pop(task)
                    ack, error = task.result()
                    transfer = self.transfers[index]

                    if error is not None:
                        transfer.state = ChunkState.PERMANENTLY_FAILED
                        logger.error(f"Chunk {index} permanently failed: {error} [file_id={file_id}]")
                        if failure is None:
                            failure = error
                        continue

                    transfer.state = ChunkState.UPLOADED
                    self.completed.add(index)
                    self._emit_progress()
                    if ack.complete and ack.resource_url and early_url is None:
                        early_url = ack.resource_url

                if early_url is not None:
                    logger.info(
                        f"Server reported completion after chunk upload, skipping finalize [file_id={file_id}]"
                    )
                    await self._abandon()
                    return Completed(resource_url=early_url)

            if failure is not None:
                return Failed(reason=str(failure), chunk_index=failure.chunk_index, error=failure)

            if self.cancelled:
                return Cancelled()

            return await self._finalize(cancel_waiter)
        finally:
            await self._abandon()
            cancel_waiter.cancel()
            await asyncio.gather(cancel_waiter, return_exceptions=True)

    def _admit(self, index: int) -> None:
        transfer = self.transfers[index]
        transfer.state = ChunkState.IN_FLIGHT
        task = asyncio.create_task(self._transfer(transfer), name=f"chunk-{index}")
        self._in_flight[task] = index
        self.peak_in_flight = max(self.peak_in_flight, len(self._in_flight))

    async def _abandon(self) -> None:
        """Cancel and join every in-flight chunk task."""
        if not self._in_flight:
            return
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for task in tasks:
            transfer = self.transfers[self._in_flight.pop(task)]
            if transfer.state in (ChunkState.IN_FLIGHT, ChunkState.RETRYING):
                transfer.state = ChunkState.PENDING

    async def _transfer(self, transfer: ChunkTransfer) -> ChunkResult:
        """
        Upload one chunk, retrying transient failures with exponential backoff.

        Never raises (other than on cancellation); the outcome is returned to
        the scheduling loop.
        """
        chunk = transfer.chunk
        try:
            data = await asyncio.to_thread(self.source.read, chunk.byte_start, chunk.byte_end)
        except OSError as e:
            error = UploadError(f"Cannot read chunk bytes: {e}", chunk_index=chunk.index)
            error.__cause__ = e
            return None, error

        if len(data) != chunk.size:
            return None, ValidationError(
                f"Read {len(data)} bytes, expected {chunk.size}; source changed during upload",
                chunk_index=chunk.index,
            )

        error: Optional[UploadError] = None
        for attempt in range(self.max_attempts):
            transfer.attempts = attempt + 1
            transfer.state = ChunkState.IN_FLIGHT
            try:
                result = await asyncio.wait_for(
                    self.client.upload_chunk(
                        chunk,
                        data,
                        self.descriptor,
                        self.chunk_size,
                        self.total_chunks,
                        timeout=self.chunk_timeout,
                    ),
                    timeout=self.chunk_timeout,
                )
            except asyncio.TimeoutError as e:
                error = TransientNetworkError(
                    f"Upload timed out after {self.chunk_timeout}s", chunk_index=chunk.index
                )
                error.__cause__ = e
            else:
                if result.ok and result.value.accepted:
                    return result.value, None
                if result.ok:
                    error = ValidationError(
                        f"Server did not accept chunk: {result.value.message or 'no reason given'}",
                        chunk_index=chunk.index,
                    )
                else:
                    error = result.error
                    if error.chunk_index is None:
                        error.with_chunk(chunk.index)

            if not error.retryable:
                return None, error

            if attempt + 1 < self.max_attempts:
                delay = self.backoff_base ** attempt
                transfer.state = ChunkState.RETRYING
                logger.warning(
                    f"Chunk {chunk.index} failed (attempt {attempt + 1}/{self.max_attempts}), "
                    f"retrying in {delay}s: {error.message}"
                )
                await self._sleep(delay)

        exhausted = TransientNetworkError(
            f"Failed after {self.max_attempts} attempts: {error.message}",
            chunk_index=chunk.index,
            status_code=error.status_code,
            code=error.code,
        )
        exhausted.__cause__ = error
        return None, exhausted

    async def _finalize(self, cancel_waiter: asyncio.Future) -> TransferOutcome:
        file_id = self.descriptor.file_id
        self._set_state(AttemptState.FINALIZING)
        logger.info(f"All {self.total_chunks} chunks stored, finalizing [file_id={file_id}]")

        finalize_task = asyncio.ensure_future(self.client.finalize(self.descriptor, self.total_chunks))
        done, _ = await asyncio.wait({finalize_task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)

        if finalize_task not in done:
            finalize_task.cancel()
            await asyncio.gather(finalize_task, return_exceptions=True)
            logger.info(f"Upload cancelled during finalize [file_id={file_id}]")
            return Cancelled(reason="Upload cancelled during finalize")

        result = finalize_task.result()
        if result.ok:
            return Completed(resource_url=result.value.resource_url)
        return Failed(reason=str(result.error), error=result.error)
