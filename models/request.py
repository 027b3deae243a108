"""
Inbound request model.
"""

import enum
from dataclasses import dataclass
from typing import Optional


class FileKind(enum.Enum):
    """Kind of attachment carried by an inbound message."""
    VOICE = "voice"
    AUDIO = "audio"
    DOCUMENT = "document"


@dataclass(frozen=True)
class InboundRequest:
    """A message with an attachment, as delivered by the transport."""
    kind: FileKind
    target: int  # chat to reply into
    message_id: int  # originating message
    file_id: str
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
