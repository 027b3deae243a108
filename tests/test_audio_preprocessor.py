import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from engine.audio_preprocessor import AudioPreprocessor
from utils.exceptions import ConversionFailed, UnreadableMedia


@pytest.fixture
def preprocessor():
    return AudioPreprocessor("ffmpeg", "ffprobe", short_audio_threshold=1.5)


def test_probe_parses_duration(preprocessor):
    with patch("engine.audio_preprocessor.subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(stdout="12.480000\n")
        assert preprocessor.probe_duration(Path("/tmp/x.audio")) == pytest.approx(12.48)

    args = mock_run.call_args[0][0]
    assert args[0] == "ffprobe"
    assert "format=duration" in args


@pytest.mark.parametrize("side_effect, stdout", [
    (subprocess.CalledProcessError(1, "ffprobe"), ""),
    (FileNotFoundError("ffprobe"), ""),
    (None, "N/A\n"),
])
def test_probe_failures_are_unreadable_media(preprocessor, side_effect, stdout):
    with patch("engine.audio_preprocessor.subprocess.run") as mock_run:
        mock_run.side_effect = side_effect
        mock_run.return_value = MagicMock(stdout=stdout)
        with pytest.raises(UnreadableMedia):
            preprocessor.probe_duration(Path("/tmp/x.audio"))


def test_short_audio_is_padded(preprocessor):
    command = preprocessor.build_convert_command(Path("in.audio"), Path("out.wav"), 0.4)
    assert command[command.index("-af") + 1] == "apad=whole_dur=1.5"
    assert command[-1] == "out.wav"


def test_normal_audio_is_not_padded(preprocessor):
    command = preprocessor.build_convert_command(Path("in.audio"), Path("out.wav"), 1.5)
    assert "-af" not in command
    assert command[command.index("-ar") + 1] == "16000"
    assert command[command.index("-ac") + 1] == "1"
    assert command[command.index("-c:a") + 1] == "pcm_s16le"


def test_conversion_failure(preprocessor):
    error = subprocess.CalledProcessError(1, "ffmpeg", stderr=b"Invalid data found")
    with patch("engine.audio_preprocessor.subprocess.run", side_effect=error):
        with pytest.raises(ConversionFailed):
            preprocessor.to_canonical_waveform(Path("in.audio"), Path("out.wav"), 3.0)
