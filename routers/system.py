from fastapi import APIRouter, Depends, Request

from config import settings
from engine.transcription_manager import TranscriptionManager

router = APIRouter()


def get_manager(request: Request) -> TranscriptionManager:
    """Dependency returning the manager created at startup."""
    return request.app.state.manager


@router.get("/status")
async def get_status(manager: TranscriptionManager = Depends(get_manager)):
    """Current admission and engine queue state."""
    return manager.status()


@router.get("/config")
async def get_config():
    """Effective tunables (secrets excluded)."""
    return settings.model_dump(
        exclude={"telegram_token", "telegram_webhook_secret"},
        mode="json",
    )
