"""Stateless replay of the routing pipeline over client-held state."""

from .processor import (
    DEFAULT_BRANCH_TOPIC,
    branch_id_for,
    message_id_for,
    process_ephemeral_conversation,
    process_with_store,
)
from .state import (
    EphemeralBranch,
    EphemeralMessage,
    EphemeralState,
    InMemoryStateStore,
    StateStore,
)

__all__ = [
    "DEFAULT_BRANCH_TOPIC",
    "EphemeralBranch",
    "EphemeralMessage",
    "EphemeralState",
    "InMemoryStateStore",
    "StateStore",
    "branch_id_for",
    "message_id_for",
    "process_ephemeral_conversation",
    "process_with_store",
]
