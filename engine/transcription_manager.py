"""
TranscriptionManager: the per-request lifecycle.

Owns the admission counter, the single-worker job queue and the engine
supervisor. Each inbound request runs in its own task: admission,
download, probe, conversion, then a turn on the engine, then cleanup.
"""

import asyncio
import logging
import math
from typing import Any, Dict, Optional, Set

from config import settings
from engine.admission import AdmissionCounter
from engine.audio_preprocessor import AudioPreprocessor
from engine.job_queue import JobQueue, TranscriptionJob
from engine.model_selector import ModelSelector
from engine.supervisor import EngineSupervisor, SupervisorResult
from models import InboundRequest
from services.file_service import FileService
from services.transport import Transport
from utils.exceptions import DownloadFailed, DurationExceeded, JobError, QueueFull, UnreadableMedia
from utils.perf_logger import perf_logger

logger = logging.getLogger(__name__)


class TranscriptionManager:
    """
    Coordinates admission, preprocessing and serialized engine runs.

    Every admitted request releases its slot and deletes its temp files
    on every exit path.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        admission: AdmissionCounter,
        queue: JobQueue,
        supervisor: EngineSupervisor,
        selector: ModelSelector,
        preprocessor: AudioPreprocessor,
        files: FileService,
        max_seconds: float = 900,
        short_audio_threshold: float = 1.5
    ):
        self.transport = transport
        self.admission = admission
        self.queue = queue
        self.supervisor = supervisor
        self.selector = selector
        self.preprocessor = preprocessor
        self.files = files
        self.max_seconds = max_seconds
        self.short_audio_threshold = short_audio_threshold
        self._tasks: Set[asyncio.Task] = set()
        self.queue.set_processor(self._transcribe)

    @classmethod
    def from_settings(cls, transport: Transport, config=settings) -> "TranscriptionManager":
        return cls(
            transport,
            admission=AdmissionCounter(config.max_queue),
            queue=JobQueue(),
            supervisor=EngineSupervisor.from_settings(transport, config),
            selector=ModelSelector.from_settings(config),
            preprocessor=AudioPreprocessor.from_settings(config),
            files=FileService.from_settings(config),
            max_seconds=config.max_seconds,
            short_audio_threshold=config.short_audio_threshold,
        )

    async def start(self) -> None:
        await self.queue.start_worker()

    async def stop(self) -> None:
        """Stop the engine worker and cancel in-flight requests."""
        await self.queue.stop_worker()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def dispatch(self, request: InboundRequest) -> asyncio.Task:
        """Handle a request in its own task and return the task."""
        task = asyncio.create_task(self.handle_request(request))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Request handling failed", exc_info=task.exception())

    def check_duration(self, duration: float) -> None:
        """
        Raises:
            UnreadableMedia: duration is zero, negative or not a number.
            DurationExceeded: duration is above max_seconds.
        """
        if math.isnan(duration) or duration <= 0:
            raise UnreadableMedia(f"Invalid audio duration: {duration}")
        if duration > self.max_seconds:
            raise DurationExceeded(duration, self.max_seconds)

    async def handle_request(self, request: InboundRequest) -> Optional[SupervisorResult]:
        """
        Run one request end to end.

        Returns the engine result, or None if the request was ignored or
        rejected before reaching the engine.
        """
        if not self.files.is_audio_request(request):
            logger.debug(f"Ignoring non-audio request: message_id={request.message_id}")
            return None

        if not self.admission.try_admit():
            logger.warning(
                f"Rejected request: queue full "
                f"({self.admission.value}/{self.admission.capacity}), target={request.target}"
            )
            await self.transport.send_message(
                request.target, QueueFull.user_message, reply_to=request.message_id
            )
            return None

        job_id, input_path, output_path = self.files.next_job_paths()
        job = TranscriptionJob(
            job_id=job_id,
            target=request.target,
            reply_to=request.message_id,
            input_path=input_path,
            output_path=output_path,
        )
        logger.info(f"Job admitted: job_id={job_id}, admitted={self.admission.value}")

        try:
            try:
                await self._prepare(job, request)
            except JobError as e:
                logger.warning(f"Job rejected: job_id={job_id}, error={type(e).__name__}: {e}")
                await self.transport.send_message(job.target, e.user_message, reply_to=job.reply_to)
                return None

            # The place in line is taken before the notice is sent.
            ahead = self.queue.reserve()
            status = "Transcribing..." if ahead == 0 else f"Queued ({ahead + 1})..."
            try:
                job.status_message = await self.transport.send_message(
                    job.target, status, reply_to=job.reply_to
                )
            except BaseException:
                self.queue.cancel_reservation()
                raise
            return await self.queue.submit(job, reserved=True)
        finally:
            self.files.remove(job.input_path, job.output_path)
            self.admission.release()
            logger.info(f"Job released: job_id={job_id}, admitted={self.admission.value}")

    async def _prepare(self, job: TranscriptionJob, request: InboundRequest) -> None:
        """Download, probe and convert. The original input is always deleted."""
        loop = asyncio.get_running_loop()
        with perf_logger.phase(f"Preprocessing (Job {job.job_id})"):
            try:
                if not await self.transport.download(request, job.input_path):
                    raise DownloadFailed(f"Download failed for file_id={request.file_id}")

                duration = await loop.run_in_executor(
                    None, self.preprocessor.probe_duration, job.input_path
                )
                self.check_duration(duration)
                job.set_duration(duration, self.short_audio_threshold)

                await loop.run_in_executor(
                    None,
                    self.preprocessor.to_canonical_waveform,
                    job.input_path,
                    job.output_path,
                    duration,
                )
            finally:
                self.files.remove(job.input_path)

    async def _transcribe(self, job: TranscriptionJob) -> SupervisorResult:
        """Queue processor: runs with the engine held."""
        depth = self.queue.depth
        model = self.selector.select(depth)
        logger.info(f"Selected model {model.name}: job_id={job.job_id}, queue_depth={depth}")
        await self.transport.edit_message(job.status_message, f"Transcribing ({model.name})...")

        with perf_logger.phase(f"Transcription (Job {job.job_id})"):
            result = await self.supervisor.run(job, model)

        if result.error is not None:
            logger.warning(f"Transcription failed: job_id={job.job_id}, error={result.error}")
        return result

    def status(self) -> Dict[str, Any]:
        current = self.queue.current_job
        return {
            "capacity": self.admission.capacity,
            "admitted": self.admission.value,
            "queue_depth": self.queue.depth,
            "waiting": self.queue.waiting,
            "worker_running": self.queue.is_running,
            "current_job": current.job_id if current else None,
        }
