"""
Telegram Bot API transport.
Sends and edits messages, downloads attachments and receives updates by
long polling.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import aiofiles
import httpx

from config import settings
from models import FileKind, InboundRequest, MessageRef
from utils.exceptions import TransportError

logger = logging.getLogger(__name__)


def parse_update(update: Dict[str, Any]) -> Optional[InboundRequest]:
    """
    Map a Telegram update to an InboundRequest.

    Returns None for updates without a voice note, audio file or document.
    """
    message = update.get("message")
    if not message:
        return None

    for key, kind in (
        ("voice", FileKind.VOICE),
        ("audio", FileKind.AUDIO),
        ("document", FileKind.DOCUMENT),
    ):
        attachment = message.get(key)
        if attachment:
            return InboundRequest(
                kind=kind,
                target=message["chat"]["id"],
                message_id=message["message_id"],
                file_id=attachment["file_id"],
                mime_type=attachment.get("mime_type"),
                file_name=attachment.get("file_name"),
            )
    return None


class TelegramService:
    """Transport implementation for the Telegram Bot API."""

    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        client: Optional[httpx.AsyncClient] = None,
        poll_timeout: int = 30
    ):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.poll_timeout = poll_timeout
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(poll_timeout + 10))
        self._offset: Optional[int] = None

    @classmethod
    def from_settings(cls, config=settings) -> "TelegramService":
        return cls(
            config.telegram_token or "",
            config.telegram_api_base,
            poll_timeout=config.telegram_poll_timeout,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, **params: Any) -> Any:
        """Invoke a Bot API method and return its result."""
        url = f"{self.api_base}/bot{self.token}/{method}"
        payload = {k: v for k, v in params.items() if v is not None}
        try:
            response = await self._client.post(url, json=payload)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"{method} failed: {e}")

        if not data.get("ok"):
            raise TransportError(f"{method} failed: {data.get('description', response.status_code)}")
        return data.get("result")

    async def send_message(
        self,
        target: int,
        text: str,
        reply_to: Optional[int] = None
    ) -> MessageRef:
        result = await self._call(
            "sendMessage",
            chat_id=target,
            text=text,
            reply_to_message_id=reply_to,
        )
        return MessageRef(chat_id=result["chat"]["id"], message_id=result["message_id"])

    async def edit_message(self, ref: MessageRef, text: str) -> None:
        """Edit a message's text. Failures are logged, not raised."""
        try:
            await self._call(
                "editMessageText",
                chat_id=ref.chat_id,
                message_id=ref.message_id,
                text=text,
            )
        except TransportError as e:
            if "message is not modified" in str(e):
                logger.debug(f"Edit skipped, text unchanged: message_id={ref.message_id}")
                return
            logger.warning(f"Failed to edit message {ref.message_id}: {e}")

    async def download(self, request: InboundRequest, dest: Path) -> bool:
        """Stream the request's attachment to dest."""
        try:
            info = await self._call("getFile", file_id=request.file_id)
            file_path = info["file_path"]
        except (TransportError, KeyError, TypeError) as e:
            logger.error(f"getFile failed for file_id={request.file_id}: {e}")
            return False

        url = f"{self.api_base}/file/bot{self.token}/{file_path}"
        try:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()
                async with aiofiles.open(dest, "wb") as out_file:
                    async for chunk in response.aiter_bytes(self.CHUNK_SIZE):
                        await out_file.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Download failed for file_id={request.file_id}: {e}")
            return False

        logger.info(f"Downloaded file_id={request.file_id} to {dest}")
        return True

    async def get_updates(self) -> List[Dict[str, Any]]:
        """Fetch pending updates and advance the offset past them."""
        updates = await self._call(
            "getUpdates",
            offset=self._offset,
            timeout=self.poll_timeout,
            allowed_updates=["message"],
        )
        if updates:
            self._offset = updates[-1]["update_id"] + 1
        return updates or []

    async def poll(
        self,
        handler: Callable[[InboundRequest], Any],
        retry_delay: float = 5.0
    ) -> None:
        """
        Long-poll for updates until cancelled, passing each request to handler.

        The handler must not block; it is expected to start a task.
        """
        logger.info("Telegram long polling started")
        while True:
            try:
                updates = await self.get_updates()
            except TransportError as e:
                logger.warning(f"getUpdates failed, retrying in {retry_delay}s: {e}")
                await asyncio.sleep(retry_delay)
                continue

            for update in updates:
                request = parse_update(update)
                if request is not None:
                    handler(request)
