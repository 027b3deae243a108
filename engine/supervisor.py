"""
Engine supervisor.
Runs the whisper.cpp CLI as a child process, streams its output into the
job's status message and enforces a wall-clock timeout.
"""

import asyncio
import codecs
import enum
import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from config import settings
from engine.job_queue import TranscriptionJob
from engine.model_selector import ModelConfig
from services.transport import Transport
from utils.exceptions import EngineExitedNonZero, EngineTimeout, JobError, SpawnFailed

logger = logging.getLogger(__name__)


class SupervisorState(enum.Enum):
    """Terminal states of one engine invocation."""
    TIMED_OUT = "timed_out"
    EXITED_OK = "exited_ok"
    EXITED_ERROR = "exited_error"


@dataclass
class SupervisorResult:
    """Outcome of one engine invocation."""
    state: SupervisorState
    text: str
    returncode: Optional[int] = None
    pid: Optional[int] = None
    error: Optional[JobError] = None

    @property
    def ok(self) -> bool:
        return self.state is SupervisorState.EXITED_OK


class OutputBuffer:
    """Append-only text accumulator with a take-and-reset operation."""

    def __init__(self, seed: str = ""):
        self._text = seed

    def append(self, text: str) -> None:
        self._text += text

    def take(self) -> str:
        """Return the accumulated text and reset the buffer to empty."""
        text, self._text = self._text, ""
        return text

    @property
    def text(self) -> str:
        return self._text

    def __len__(self) -> int:
        return len(self._text)


class _EngineRun:
    """Per-invocation state. Only the supervising task touches it."""

    READ_SIZE = 1024

    def __init__(self, proc: subprocess.Popen, started: float):
        self.proc = proc
        self.started = started
        self.fd = proc.stdout.fileno()
        os.set_blocking(self.fd, False)
        self.decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.buffer = OutputBuffer()
        self.last_edit = float("-inf")
        self.last_pushed: Optional[str] = None

    def drain(self, final: bool = False) -> int:
        """Read everything currently available without blocking."""
        read = 0
        while True:
            try:
                chunk = os.read(self.fd, self.READ_SIZE)
            except BlockingIOError:
                break
            if not chunk:
                break
            read += len(chunk)
            self.buffer.append(self.decoder.decode(chunk))
        if final:
            self.buffer.append(self.decoder.decode(b"", final=True))
        return read

    def kill(self) -> None:
        """SIGKILL the child and reap it."""
        if self.proc.poll() is None:
            self.proc.kill()
        self.proc.wait()

    def close(self) -> None:
        self.kill()
        self.proc.stdout.close()


class EngineSupervisor:
    """
    Supervises engine invocations.

    Each tick of the polling loop does, in order: timeout check, drain,
    flush decision, exit check, then sleeps for the poll interval.
    """

    NO_SPEECH_MESSAGE = "(no speech detected)"
    AUTO_LANGUAGE = "auto"

    def __init__(
        self,
        transport: Transport,
        engine_path: str,
        *,
        timeout: float = 600,
        message_limit: int = 4000,
        edit_interval: float = 0.5,
        poll_interval: float = 0.1,
        continuation_marker: str = "[...]\n",
        default_language: str = "it",
        clock: Callable[[], float] = time.monotonic
    ):
        if message_limit <= len(continuation_marker):
            raise ValueError("message_limit must be longer than the continuation marker")
        self.transport = transport
        self.engine_path = engine_path
        self.timeout = timeout
        self.message_limit = message_limit
        self.edit_interval = edit_interval
        self.poll_interval = poll_interval
        self.continuation_marker = continuation_marker
        self.default_language = default_language
        self._clock = clock

    @classmethod
    def from_settings(cls, transport: Transport, config=settings) -> "EngineSupervisor":
        return cls(
            transport,
            config.engine_path,
            timeout=config.engine_timeout,
            message_limit=config.message_limit,
            edit_interval=config.edit_interval_ms / 1000,
            poll_interval=config.poll_interval_ms / 1000,
            continuation_marker=config.continuation_marker,
            default_language=config.default_language,
        )

    def build_command(self, job: TranscriptionJob, model: ModelConfig) -> List[str]:
        """Engine argv. Short clips use the default language instead of auto-detect."""
        language = self.default_language if job.short_audio else self.AUTO_LANGUAGE
        return [
            self.engine_path,
            "-m", model.path,
            "-f", str(job.output_path),
            "-l", language,
            "-np", "-nt",
        ]

    async def run(self, job: TranscriptionJob, model: ModelConfig) -> SupervisorResult:
        """
        Run the engine for a job and stream its output.

        Always ends with exactly one final edit of the job's current status
        message, and never returns while the child is still alive.
        """
        command = self.build_command(job, model)
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            logger.error(f"Engine spawn failed: job_id={job.job_id}, error={e}")
            error = SpawnFailed(f"Could not start {self.engine_path}: {e}")
            await self._edit(job, error.user_message)
            return SupervisorResult(SupervisorState.EXITED_ERROR, "", error=error)

        logger.info(
            f"Engine started: job_id={job.job_id}, pid={proc.pid}, "
            f"model={model.name}, short_audio={job.short_audio}"
        )
        run = _EngineRun(proc, self._clock())
        try:
            state = await self._supervise(job, run)
        finally:
            run.close()

        text = run.buffer.text.strip()
        returncode = proc.returncode

        if state is SupervisorState.TIMED_OUT:
            error = EngineTimeout(f"Engine killed after {self.timeout}s")
            await self._edit(job, error.user_message)
            return SupervisorResult(state, text, returncode, proc.pid, error)

        error = None
        if state is SupervisorState.EXITED_ERROR:
            error = EngineExitedNonZero(returncode)
            logger.warning(
                f"Engine exited with status {returncode}: job_id={job.job_id}, "
                f"partial_text={len(text)} chars"
            )

        # Partial output beats a bare error message.
        if text:
            await self._edit(job, text)
        elif error is not None:
            await self._edit(job, error.user_message)
        else:
            await self._edit(job, self.NO_SPEECH_MESSAGE)

        logger.info(f"Engine finished: job_id={job.job_id}, state={state.value}, returncode={returncode}")
        return SupervisorResult(state, text, returncode, proc.pid, error)

    async def _supervise(self, job: TranscriptionJob, run: _EngineRun) -> SupervisorState:
        while True:
            if self._clock() - run.started > self.timeout:
                logger.warning(f"Engine timed out, killing pid={run.proc.pid}: job_id={job.job_id}")
                run.kill()
                return SupervisorState.TIMED_OUT

            run.drain()
            await self._flush(job, run)

            if run.proc.poll() is not None:
                run.drain(final=True)
                await self._flush_overflow(job, run)
                if run.proc.returncode == 0:
                    return SupervisorState.EXITED_OK
                return SupervisorState.EXITED_ERROR

            await asyncio.sleep(self.poll_interval)

    async def _flush(self, job: TranscriptionJob, run: _EngineRun) -> None:
        if len(run.buffer) > self.message_limit:
            await self._flush_overflow(job, run)
            return

        now = self._clock()
        if len(run.buffer) and now - run.last_edit >= self.edit_interval:
            text = run.buffer.text
            if text != run.last_pushed:
                await self._edit(job, text)
                run.last_pushed = text
                run.last_edit = now

    async def _flush_overflow(self, job: TranscriptionJob, run: _EngineRun) -> None:
        """
        Close the current message at the size limit and continue in a new one.

        The buffer is reset before the new message is sent, and the new
        message becomes the job's status message for every later edit.
        """
        while len(run.buffer) > self.message_limit:
            text = run.buffer.take()
            head, tail = text[:self.message_limit], text[self.message_limit:]
            await self._edit(job, head)

            run.buffer.append(self.continuation_marker)
            run.buffer.append(tail)
            job.status_message = await self.transport.send_message(job.target, self.continuation_marker)
            run.last_pushed = self.continuation_marker
            run.last_edit = self._clock()
            logger.info(
                f"Output overflow: job_id={job.job_id}, "
                f"continuing in message_id={job.status_message.message_id}"
            )

    async def _edit(self, job: TranscriptionJob, text: str) -> None:
        await self.transport.edit_message(job.status_message, text)
