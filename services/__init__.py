"""
Services package.
"""

from services.file_service import FileService
from services.telegram_service import TelegramService, parse_update
from services.transport import Transport

__all__ = ["FileService", "TelegramService", "Transport", "parse_update"]
