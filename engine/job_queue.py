"""
Async job queue for engine invocations.
Implements single-worker concurrency: the engine runs one job at a time and
queue order is the order in which jobs were submitted.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Tuple

from models import MessageRef

logger = logging.getLogger(__name__)


@dataclass
class TranscriptionJob:
    """A single transcription request, from admission to cleanup."""
    job_id: int
    target: int
    reply_to: int
    input_path: Path
    output_path: Path
    duration: float = 0.0
    short_audio: bool = False
    # Current live status message. Replaced when output overflows into a new message.
    status_message: Optional[MessageRef] = None
    enqueued_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def set_duration(self, duration: float, short_audio_threshold: float) -> None:
        """Record the probed duration. Exactly at the threshold is not short."""
        self.duration = duration
        self.short_audio = duration < short_audio_threshold


_QueueItem = Tuple[TranscriptionJob, "asyncio.Future[Any]"]


class JobQueue:
    """
    Async job queue with single-worker concurrency.

    The worker is the engine lock: only the job it is currently processing
    can hold the engine, and it moves to the next job only once the
    processor has returned or raised.
    """

    def __init__(self):
        self._queue: asyncio.Queue[_QueueItem] = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self._processor: Optional[Callable[[TranscriptionJob], Awaitable[Any]]] = None
        self._running = False
        self._current_job: Optional[TranscriptionJob] = None
        self._depth = 0

    def set_processor(self, processor: Callable[[TranscriptionJob], Awaitable[Any]]) -> None:
        """
        Set the async function that processes each job.

        Args:
            processor: Async function that takes a TranscriptionJob
        """
        self._processor = processor

    def reserve(self) -> int:
        """
        Take a place in line ahead of submit().

        The place counts towards depth at once, so callers that reserve
        back to back get distinct positions even if they await something
        before submitting. Returns the number of jobs ahead.
        """
        ahead = self._depth
        self._depth += 1
        return ahead

    def cancel_reservation(self) -> None:
        """Give back a place taken by reserve() that will not be submitted."""
        self._depth -= 1

    async def submit(self, job: TranscriptionJob, reserved: bool = False) -> Any:
        """
        Add a job to the queue and wait until the worker has processed it.

        Args:
            job: Job to run
            reserved: The caller already holds a place from reserve()

        Returns the processor's result or raises its exception.
        """
        if not self._running:
            if reserved:
                self.cancel_reservation()
            raise RuntimeError("Job queue worker is not running")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        job.enqueued_at = datetime.now(timezone.utc)
        if not reserved:
            self._depth += 1
        await self._queue.put((job, future))
        logger.info(f"Job enqueued: job_id={job.job_id}, queue_depth={self._depth}")
        return await future

    async def start_worker(self) -> None:
        """Start the background worker loop."""
        if self._running:
            logger.warning("Worker already running")
            return

        if self._processor is None:
            raise RuntimeError("No processor set. Call set_processor() first.")

        self._running = True
        self._worker_task = asyncio.create_task(self._worker_loop())
        logger.info("Job queue worker started (concurrency=1)")

    async def stop_worker(self) -> None:
        """Cancel the worker and fail every job still waiting in the queue."""
        self._running = False

        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        while not self._queue.empty():
            job, future = self._queue.get_nowait()
            self._queue.task_done()
            self._depth -= 1
            if not future.done():
                future.set_exception(RuntimeError("Job queue stopped"))

        logger.info("Job queue worker stopped")

    async def _worker_loop(self) -> None:
        """Main worker loop - processes one job at a time."""
        while True:
            job, future = await self._queue.get()
            try:
                # Submitter went away while waiting
                if future.cancelled():
                    logger.info(f"Skipping abandoned job: job_id={job.job_id}")
                    continue

                self._current_job = job
                logger.info(f"Processing job: job_id={job.job_id}, queue_depth={self._depth}")
                try:
                    result = await self._processor(job)
                except asyncio.CancelledError:
                    if not future.done():
                        future.cancel()
                    raise
                except Exception as e:
                    logger.error(f"Job failed: job_id={job.job_id}, error={e}")
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
            finally:
                self._depth -= 1
                self._current_job = None
                self._queue.task_done()

    @property
    def depth(self) -> int:
        """Jobs submitted and not yet finished, including the running one."""
        return self._depth

    @property
    def waiting(self) -> int:
        """Jobs submitted and not yet started."""
        return self._depth - (1 if self._current_job is not None else 0)

    @property
    def current_job(self) -> Optional[TranscriptionJob]:
        return self._current_job

    @property
    def is_running(self) -> bool:
        """Whether the worker is running."""
        return self._running
