"""
Load-adaptive model selection.
"""

from dataclasses import dataclass

from config import settings


@dataclass(frozen=True)
class ModelConfig:
    """An engine model: display name and path to the weights file."""
    name: str
    path: str


@dataclass(frozen=True)
class ModelSelector:
    """
    Picks the cheaper model when the engine queue is deep.

    Evaluated when a job reaches the engine, not when it was admitted, so
    the choice reflects the load at that moment.
    """
    fast: ModelConfig
    accurate: ModelConfig
    threshold: int

    @classmethod
    def from_settings(cls, config=settings) -> "ModelSelector":
        return cls(
            fast=ModelConfig("base", config.model_base_path),
            accurate=ModelConfig("medium", config.model_medium_path),
            threshold=config.queue_threshold_base,
        )

    def select(self, queue_depth: int) -> ModelConfig:
        if queue_depth >= self.threshold:
            return self.fast
        return self.accurate
