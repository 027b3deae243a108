"""
Messaging transport interface.

The core only needs to send a message, edit one in place and download an
attachment to a local path it chooses.
"""

from pathlib import Path
from typing import Optional, Protocol

from models import InboundRequest, MessageRef


class Transport(Protocol):

    async def send_message(
        self,
        target: int,
        text: str,
        reply_to: Optional[int] = None
    ) -> MessageRef:
        """Send a new message and return its handle."""
        ...

    async def edit_message(self, ref: MessageRef, text: str) -> None:
        """Replace the text of an existing message."""
        ...

    async def download(self, request: InboundRequest, dest: Path) -> bool:
        """Download the request's attachment to dest. Returns success."""
        ...
