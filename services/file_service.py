"""
Temp file and request classification service.
Decides which requests are audio, names per-job temp files and removes them.
"""

import itertools
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, Optional, Tuple

from config import settings
from models import FileKind, InboundRequest

logger = logging.getLogger(__name__)


class FileService:
    """Service for per-job temp files."""

    def __init__(
        self,
        temp_dir: Path,
        prefix: str = "wb",
        audio_extensions: Iterable[str] = ()
    ):
        self.temp_dir = Path(temp_dir)
        self.prefix = prefix
        self.audio_extensions = {ext.lower() for ext in audio_extensions}
        self._ids = itertools.count()
        self._ids_lock = threading.Lock()

    @classmethod
    def from_settings(cls, config=settings) -> "FileService":
        return cls(config.temp_dir, config.temp_prefix, config.audio_extensions)

    def is_audio_request(self, request: InboundRequest) -> bool:
        """
        Accept voice notes and audio files. Documents are accepted only if
        the MIME type looks like audio or the file name has an audio extension.
        """
        if request.kind in (FileKind.VOICE, FileKind.AUDIO):
            return True
        if request.kind != FileKind.DOCUMENT:
            return False

        if request.mime_type:
            mime = request.mime_type.lower()
            if "audio/" in mime or "ogg" in mime:
                return True
        if request.file_name:
            _, ext = os.path.splitext(request.file_name)
            if ext and ext.lower() in self.audio_extensions:
                return True
        return False

    def next_job_paths(self) -> Tuple[int, Path, Path]:
        """
        Allocate a job id and its input/output paths.

        Names are built from the process id and a per-process counter only.
        The extension is fixed: ffmpeg detects the format from content, and
        the user-supplied file name never reaches the filesystem.
        """
        with self._ids_lock:
            job_id = next(self._ids)
        stem = f"{self.prefix}_{os.getpid()}_{job_id}"
        return (
            job_id,
            self.temp_dir / f"{stem}.audio",
            self.temp_dir / f"{stem}.wav",
        )

    def remove(self, *paths: Optional[Path]) -> None:
        """Delete the given files if they exist."""
        for path in paths:
            if path is None:
                continue
            try:
                Path(path).unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to delete temp file {path}: {e}")
            else:
                logger.debug(f"Removed temp file: {path}")
