"""
Telegram webhook intake, an alternative to long polling.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header

from config import settings
from engine.transcription_manager import TranscriptionManager
from routers.system import get_manager
from services.telegram_service import parse_update
from utils.exceptions import AppError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook")
async def receive_update(
    update: Dict[str, Any],
    manager: TranscriptionManager = Depends(get_manager),
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None)
):
    """
    Accept one update. Audio requests are handled in the background so the
    webhook returns immediately.
    """
    secret = settings.telegram_webhook_secret
    if secret and x_telegram_bot_api_secret_token != secret:
        raise AppError("Invalid webhook secret", status_code=403)

    request = parse_update(update)
    if request is None:
        return {"ok": True, "accepted": False}

    manager.dispatch(request)
    logger.info(f"Webhook update dispatched: message_id={request.message_id}")
    return {"ok": True, "accepted": True}
