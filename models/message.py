"""
Outbound message handle.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class MessageRef:
    """Identifies a sent message so it can be edited later."""
    chat_id: int
    message_id: int
