"""Storage for conversations, branches, messages and facts."""

from .base import DriftStore
from .models import Branch, Conversation, Message
from .sqlite import SQLiteDriftStore

__all__ = [
    "Branch",
    "Conversation",
    "DriftStore",
    "Message",
    "SQLiteDriftStore",
]
