import asyncio
import sys
import textwrap
from pathlib import Path
from typing import List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config import settings
from engine.admission import AdmissionCounter
from engine.job_queue import JobQueue, TranscriptionJob
from engine.model_selector import ModelConfig, ModelSelector
from engine.supervisor import EngineSupervisor
from engine.transcription_manager import TranscriptionManager
from models import FileKind, InboundRequest, MessageRef
from services.file_service import FileService
from utils.exceptions import TransportError

BASE_MODEL = ModelConfig("base", "/models/ggml-base.bin")
MEDIUM_MODEL = ModelConfig("medium", "/models/ggml-medium.bin")


# --- Fake collaborators ---

class FakeTransport:
    """Records every outbound call in order."""

    def __init__(
        self,
        download_ok: bool = True,
        payload: bytes = b"OggS fake audio",
        send_delay: float = 0.0,
        fail_send: Optional[int] = None
    ):
        """
        Args:
            send_delay: Seconds each send_message waits before it lands
            fail_send: 1-based index of the send_message call that raises
        """
        self.events: List[Tuple[str, MessageRef, str, Optional[int]]] = []
        self.download_ok = download_ok
        self.payload = payload
        self.send_delay = send_delay
        self.fail_send = fail_send
        self.downloads: List[Path] = []
        self._send_calls = 0
        self._next_id = 100

    async def send_message(self, target, text, reply_to=None):
        self._send_calls += 1
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self._send_calls == self.fail_send:
            raise TransportError("sendMessage failed: Bad Gateway")
        self._next_id += 1
        ref = MessageRef(chat_id=target, message_id=self._next_id)
        self.events.append(("send", ref, text, reply_to))
        return ref

    async def edit_message(self, ref, text):
        self.events.append(("edit", ref, text, None))

    async def download(self, request, dest):
        self.downloads.append(Path(dest))
        if not self.download_ok:
            return False
        Path(dest).write_bytes(self.payload)
        return True

    def sends(self) -> List[str]:
        return [text for kind, _, text, _ in self.events if kind == "send"]

    def edits(self, ref: Optional[MessageRef] = None) -> List[str]:
        return [
            text for kind, r, text, _ in self.events
            if kind == "edit" and (ref is None or r == ref)
        ]

    def final_texts(self, initial: Optional[MessageRef] = None) -> List[Tuple[MessageRef, str]]:
        """Last text of every message, in the order the messages appeared."""
        order: List[MessageRef] = [initial] if initial else []
        last = {}
        for kind, ref, text, _ in self.events:
            if ref not in last and ref not in order:
                order.append(ref)
            last[ref] = text
        return [(ref, last[ref]) for ref in order if ref in last]


class StubPreprocessor:
    """Stands in for ffprobe/ffmpeg."""

    def __init__(self, duration: float = 2.0, probe_error=None, convert_error=None):
        self.duration = duration
        self.probe_error = probe_error
        self.convert_error = convert_error
        self.converted: List[Tuple[Path, Path, float]] = []

    def probe_duration(self, file_path):
        assert Path(file_path).exists()
        if self.probe_error:
            raise self.probe_error
        return self.duration

    def to_canonical_waveform(self, input_path, output_path, duration):
        if self.convert_error:
            raise self.convert_error
        Path(output_path).write_bytes(b"RIFF\x00\x00\x00\x00WAVE")
        self.converted.append((Path(input_path), Path(output_path), duration))


def voice_request(message_id: int = 7, target: int = 42) -> InboundRequest:
    return InboundRequest(
        kind=FileKind.VOICE,
        target=target,
        message_id=message_id,
        file_id=f"file-{message_id}",
        mime_type="audio/ogg",
    )


# --- Engine scripts ---

@pytest.fixture
def engine_log(tmp_path) -> Path:
    return tmp_path / "engine.log"


@pytest.fixture
def make_engine(tmp_path, engine_log):
    """
    Write an executable fake engine. Every invocation appends its argv to
    engine_log before running the given body.
    """
    def _make(body: str, name: str = "fake-whisper") -> str:
        path = tmp_path / name
        script = (
            f"#!{sys.executable}\n"
            "import os, sys, time\n"
            f"with open({str(engine_log)!r}, 'a') as log:\n"
            "    log.write(' '.join(sys.argv[1:]) + '\\n')\n"
            + textwrap.dedent(body)
        )
        path.write_text(script)
        path.chmod(0o755)
        return str(path)
    return _make


def read_engine_log(engine_log: Path) -> List[List[str]]:
    if not engine_log.exists():
        return []
    return [line.split() for line in engine_log.read_text().splitlines()]


# --- Component builders ---

@pytest.fixture
def job_dir(tmp_path) -> Path:
    path = tmp_path / "jobs"
    path.mkdir()
    return path


@pytest.fixture
def make_job(job_dir):
    def _make(job_id: int = 1, duration: float = 2.0) -> TranscriptionJob:
        job = TranscriptionJob(
            job_id=job_id,
            target=42,
            reply_to=7,
            input_path=job_dir / f"in_{job_id}.audio",
            output_path=job_dir / f"out_{job_id}.wav",
            status_message=MessageRef(chat_id=42, message_id=1),
        )
        job.set_duration(duration, 1.5)
        return job
    return _make


def make_supervisor(transport, engine_path: str, **overrides) -> EngineSupervisor:
    options = dict(
        timeout=5.0,
        message_limit=4000,
        edit_interval=0.05,
        poll_interval=0.01,
        continuation_marker="[...]\n",
        default_language="it",
    )
    options.update(overrides)
    return EngineSupervisor(transport, engine_path, **options)


@pytest.fixture
def build_manager(job_dir):
    def _build(
        transport,
        engine_path: str,
        preprocessor=None,
        capacity: int = 10,
        max_seconds: float = 900,
        **supervisor_overrides
    ) -> TranscriptionManager:
        return TranscriptionManager(
            transport,
            admission=AdmissionCounter(capacity),
            queue=JobQueue(),
            supervisor=make_supervisor(transport, engine_path, **supervisor_overrides),
            selector=ModelSelector(fast=BASE_MODEL, accurate=MEDIUM_MODEL, threshold=3),
            preprocessor=preprocessor or StubPreprocessor(),
            files=FileService(job_dir, "wb", settings.audio_extensions),
            max_seconds=max_seconds,
            short_audio_threshold=1.5,
        )
    return _build


# --- Client Setup ---

@pytest_asyncio.fixture(scope="function")
async def client(build_manager, make_engine):
    from main import app

    app.state.manager = build_manager(FakeTransport(), make_engine("print('hi')"))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
