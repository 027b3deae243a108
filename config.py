"""
Application configuration management.
Centralizes all tunables of the transcription bot: admission capacity,
engine paths and limits, message streaming and the Telegram transport.
"""

import shutil
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Voice Transcription Bot"
    debug: bool = False

    # Server
    host: str = "127.0.0.1"
    port: int = 8081

    # Admission and audio limits
    max_queue: int = 10
    max_seconds: float = 900
    short_audio_threshold: float = 1.5  # below this, use default_language
    default_language: str = "it"

    # Engine (whisper.cpp CLI)
    engine_path: str = "/app/build/bin/whisper-cli"
    engine_timeout: float = 600
    model_base_path: str = "/app/models/ggml-base.bin"
    model_medium_path: str = "/app/models/ggml-medium.bin"
    queue_threshold_base: int = 3  # use base model when queue depth >= this

    # Streaming output
    message_limit: int = 4000
    edit_interval_ms: int = 500
    poll_interval_ms: int = 100
    continuation_marker: str = "[...]\n"

    # Temp files
    temp_dir: Path = Path("/tmp")
    temp_prefix: str = "wb"

    # FFmpeg, resolved from PATH when available
    ffmpeg_path: str = shutil.which("ffmpeg") or "ffmpeg"
    ffprobe_path: str = shutil.which("ffprobe") or "ffprobe"

    audio_extensions: set[str] = {
        ".mp3", ".wav", ".ogg", ".oga", ".m4a", ".flac", ".opus",
        ".mpeg", ".mpga", ".wma", ".aac", ".webm",
    }

    # Telegram transport
    telegram_token: Optional[str] = None
    telegram_api_base: str = "https://api.telegram.org"
    telegram_polling: bool = True
    telegram_poll_timeout: int = 30
    telegram_webhook_secret: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

# Ensure the temp directory exists
settings.temp_dir.mkdir(parents=True, exist_ok=True)
