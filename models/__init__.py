"""
Data models package.
"""

from models.request import FileKind, InboundRequest
from models.message import MessageRef

__all__ = [
    "FileKind",
    "InboundRequest",
    "MessageRef",
]
