"""
Centralized exception definitions for the bot.

Job errors are terminal for a single request. Each one carries the fixed
text shown to the user when the job ends in that state.
"""

class AppError(Exception):
    """Base class for application errors."""
    def __init__(self, message: str, status_code: int = 500, detail: str = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail or message

class TransportError(AppError):
    """Raised when the messaging API rejects or fails a call."""
    def __init__(self, message: str = "Transport call failed"):
        super().__init__(message, status_code=502)


class JobError(AppError):
    """Base class for terminal job failures."""
    user_message = "Transcription failed."

    def __init__(self, message: str = None):
        super().__init__(message or self.user_message, status_code=422)

class DownloadFailed(JobError):
    user_message = "Can't download audio."

class UnreadableMedia(JobError):
    user_message = "Can't read audio duration."

class DurationExceeded(JobError):
    """Raised when the probed duration is above the configured maximum."""
    def __init__(self, duration: float, max_seconds: float):
        self.duration = duration
        self.max_seconds = max_seconds
        self.user_message = f"Audio too long: {duration:.0f}s (max {max_seconds:.0f}s)."
        super().__init__(self.user_message)

class ConversionFailed(JobError):
    user_message = "Audio conversion failed."

class QueueFull(JobError):
    user_message = "Too busy, try later."

class SpawnFailed(JobError):
    user_message = "Transcription failed."

class EngineTimeout(JobError):
    user_message = "Transcription timed out."

class EngineExitedNonZero(JobError):
    """The engine exited with an error. Partial text, if any, is still shown."""
    user_message = "Transcription failed."

    def __init__(self, returncode: int):
        self.returncode = returncode
        super().__init__(f"Engine exited with status {returncode}")
