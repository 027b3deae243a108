"""
Audio preprocessing.
Probes duration with ffprobe and converts input to the 16 kHz mono WAV the
engine expects, padding very short clips with silence.
"""

import logging
import subprocess
from pathlib import Path
from typing import List

from config import settings
from utils.exceptions import ConversionFailed, UnreadableMedia

logger = logging.getLogger(__name__)


class AudioPreprocessor:
    """
    Wraps the ffprobe/ffmpeg invocations used before transcription.

    Both calls are blocking; run them in an executor from async code.
    """

    SAMPLE_RATE = 16000

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        short_audio_threshold: float = 1.5
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.short_audio_threshold = short_audio_threshold

    @classmethod
    def from_settings(cls, config=settings) -> "AudioPreprocessor":
        return cls(config.ffmpeg_path, config.ffprobe_path, config.short_audio_threshold)

    def probe_duration(self, file_path: Path) -> float:
        """
        Get the duration of a media file in seconds.

        Raises:
            UnreadableMedia: If ffprobe fails or prints no usable duration.
        """
        try:
            result = subprocess.run(
                [
                    self.ffprobe_path,
                    "-i", str(file_path),
                    "-show_entries", "format=duration",
                    "-v", "quiet",
                    "-of", "csv=p=0",
                ],
                capture_output=True,
                text=True,
                check=True
            )
        except (OSError, subprocess.CalledProcessError) as e:
            logger.error(f"Failed to get audio duration of {file_path}: {e}")
            raise UnreadableMedia(f"ffprobe failed on {file_path}")

        try:
            return float(result.stdout.strip())
        except ValueError:
            raise UnreadableMedia(f"Could not parse audio duration: {result.stdout.strip()!r}")

    def build_convert_command(self, input_path: Path, output_path: Path, duration: float) -> List[str]:
        command = [self.ffmpeg_path, "-y", "-i", str(input_path)]
        if duration < self.short_audio_threshold:
            # The engine rejects clips shorter than about a second.
            command += ["-af", f"apad=whole_dur={self.short_audio_threshold:.1f}"]
        command += [
            "-ar", str(self.SAMPLE_RATE),  # 16kHz sample rate (Whisper optimal)
            "-ac", "1",  # Mono
            "-c:a", "pcm_s16le",  # WAV format
            str(output_path),
        ]
        return command

    def to_canonical_waveform(self, input_path: Path, output_path: Path, duration: float) -> None:
        """
        Convert input to a 16 kHz mono PCM WAV at output_path.

        Raises:
            ConversionFailed: If ffmpeg cannot be run or exits with an error.
        """
        command = self.build_convert_command(input_path, output_path, duration)
        try:
            subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                check=True
            )
        except (OSError, subprocess.CalledProcessError) as e:
            stderr = getattr(e, "stderr", None) or b""
            logger.error(f"Failed to convert {input_path}: {e} {stderr[-500:]!r}")
            raise ConversionFailed(f"ffmpeg failed on {input_path}")
        logger.info(f"Converted {input_path} -> {output_path} ({duration:.1f}s)")
