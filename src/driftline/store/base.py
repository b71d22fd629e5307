"""Persistence protocol used by the routing pipeline."""

from typing import Protocol

from ..facts.models import FactMap
from .models import Branch, Conversation, Message


class DriftStore(Protocol):
    """CRUD operations the pipeline needs from its persistence collaborator.

    ``SQLiteDriftStore`` is the bundled implementation; tests may pass any
    object with these methods.
    """

    def ensure_conversation(self, tenant_id: str, conversation_id: str) -> Conversation: ...

    def get_conversation(self, tenant_id: str, conversation_id: str) -> Conversation | None: ...

    def set_last_active_branch(
        self, tenant_id: str, conversation_id: str, branch_id: str
    ) -> None: ...

    def list_branches(
        self, tenant_id: str, conversation_id: str, oldest_first: bool = False
    ) -> list[Branch]: ...

    def get_branch(self, branch_id: str) -> Branch | None: ...

    def create_branch(
        self,
        tenant_id: str,
        conversation_id: str,
        topic: str,
        parent_id: str | None = None,
        centroid: list[float] | None = None,
        context: str | None = None,
    ) -> Branch: ...

    def update_centroid(self, branch_id: str, centroid: list[float]) -> None: ...

    def update_branch_context(self, branch_id: str, context: str) -> None: ...

    def create_message(
        self,
        tenant_id: str,
        conversation_id: str,
        branch_id: str,
        role: str,
        content: str,
        action: str,
        reason: str,
        embedding: list[float] | None = None,
    ) -> Message: ...

    def get_messages(
        self,
        branch_id: str,
        limit: int | None = None,
        role: str | None = None,
    ) -> list[Message]: ...

    def get_facts(self, branch_id: str) -> FactMap: ...

    def fact_keys(self, branch_id: str) -> list[str]: ...

    def replace_facts(self, branch_id: str, facts: FactMap) -> None: ...
