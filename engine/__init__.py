"""
Engine package for transcription processing.
Contains admission control, the single-worker job queue, model selection,
audio preprocessing, the engine supervisor and the coordinating manager.
"""

from engine.admission import AdmissionCounter
from engine.job_queue import JobQueue, TranscriptionJob
from engine.model_selector import ModelConfig, ModelSelector
from engine.audio_preprocessor import AudioPreprocessor
from engine.supervisor import EngineSupervisor, OutputBuffer, SupervisorResult, SupervisorState
from engine.transcription_manager import TranscriptionManager

__all__ = [
    "AdmissionCounter",
    "AudioPreprocessor",
    "EngineSupervisor",
    "JobQueue",
    "ModelConfig",
    "ModelSelector",
    "OutputBuffer",
    "SupervisorResult",
    "SupervisorState",
    "TranscriptionJob",
    "TranscriptionManager",
]
