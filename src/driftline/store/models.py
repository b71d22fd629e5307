"""Records held by the drift store."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Conversation:
    """Root grouping of branches for one chat session.

    Attributes:
        id: Conversation id, unique per tenant.
        tenant_id: Owning tenant.
        last_active_branch_id: Branch that received the latest message.
        created_at: ISO timestamp when created.
        updated_at: ISO timestamp when last updated.
    """

    id: str
    tenant_id: str
    last_active_branch_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Branch:
    """A contiguous topic segment of a conversation.

    ``topic`` is set once when the branch is created; ``context`` is the
    evolving one-sentence summary that routing calls overwrite.
    """

    id: str
    conversation_id: str
    tenant_id: str
    topic: str
    parent_id: str | None = None
    context: str | None = None
    depth: int = 0
    message_count: int = 0
    centroid: list[float] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Message:
    """One role-tagged utterance, attributed to exactly one branch."""

    id: str
    conversation_id: str
    branch_id: str
    role: str
    content: str
    action: str
    reason: str
    embedding: list[float] | None = None
    created_at: str | None = None
