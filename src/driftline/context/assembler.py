"""Assemble a branch's messages and ancestor facts for a downstream prompt."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..errors import NotFoundError
from ..facts.models import FactMap, FactValue, active_facts
from ..store.base import DriftStore

if TYPE_CHECKING:
    from ..ephemeral.state import EphemeralState

DEFAULT_MAX_MESSAGES = 50
DEFAULT_MAX_ANCESTOR_DEPTH = 5


@dataclass(frozen=True)
class ContextMessage:
    id: str
    role: str
    content: str
    created_at: str | None = None


@dataclass(frozen=True)
class BranchFacts:
    """Active facts of one branch on the ancestor path."""

    branch_id: str
    branch_topic: str
    is_current: bool
    facts: dict[str, list[FactValue]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "branchId": self.branch_id,
            "branchTopic": self.branch_topic,
            "isCurrent": self.is_current,
            "facts": [
                {"key": key, "value": v.value, "confidence": v.confidence}
                for key, values in self.facts.items()
                for v in values
            ],
        }


@dataclass(frozen=True)
class BranchContext:
    """Messages of a branch plus facts inherited from its ancestors.

    ``all_facts`` starts with the branch itself, followed by its parent,
    grandparent and so on.
    """

    branch_id: str
    branch_topic: str
    messages: list[ContextMessage] = field(default_factory=list)
    all_facts: list[BranchFacts] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "branchId": self.branch_id,
            "branchTopic": self.branch_topic,
            "messages": [
                {"id": m.id, "role": m.role, "content": m.content, "createdAt": m.created_at}
                for m in self.messages
            ],
            "allFacts": [f.to_dict() for f in self.all_facts],
        }


@dataclass(frozen=True)
class _Node:
    id: str
    topic: str
    parent_id: str | None
    facts: FactMap


def _walk_ancestors(
    start: _Node,
    lookup: Callable[[str], _Node | None],
    include_ancestors: bool,
    max_depth: int,
) -> list[BranchFacts]:
    blocks = [BranchFacts(start.id, start.topic, True, active_facts(start.facts))]
    if not include_ancestors:
        return blocks

    seen = {start.id}
    parent_id = start.parent_id
    while parent_id is not None and len(blocks) <= max_depth and parent_id not in seen:
        node = lookup(parent_id)
        if node is None:
            break
        seen.add(node.id)
        blocks.append(BranchFacts(node.id, node.topic, False, active_facts(node.facts)))
        parent_id = node.parent_id
    return blocks


class ContextAssembler:
    """Builds ``BranchContext`` objects from a persisted store."""

    def __init__(self, store: DriftStore) -> None:
        self.store = store

    def _node(self, branch_id: str) -> _Node | None:
        branch = self.store.get_branch(branch_id)
        if branch is None:
            return None
        return _Node(branch.id, branch.topic, branch.parent_id, self.store.get_facts(branch.id))

    def get(
        self,
        branch_id: str,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        include_ancestor_facts: bool = True,
        max_ancestor_depth: int = DEFAULT_MAX_ANCESTOR_DEPTH,
    ) -> BranchContext:
        """Assemble the context for a branch.

        Raises:
            NotFoundError: If the branch does not exist.
        """
        node = self._node(branch_id)
        if node is None:
            raise NotFoundError(f"Branch not found: {branch_id}")

        messages = [
            ContextMessage(m.id, m.role, m.content, m.created_at)
            for m in self.store.get_messages(branch_id, limit=max_messages)
        ]
        return BranchContext(
            branch_id=node.id,
            branch_topic=node.topic,
            messages=messages,
            all_facts=_walk_ancestors(
                node, self._node, include_ancestor_facts, max_ancestor_depth
            ),
        )

    def conversation_facts(self, tenant_id: str, conversation_id: str) -> list[BranchFacts]:
        """Active facts of every branch in a conversation, oldest branch first."""
        return [
            BranchFacts(
                branch_id=b.id,
                branch_topic=b.topic,
                is_current=False,
                facts=active_facts(self.store.get_facts(b.id)),
            )
            for b in self.store.list_branches(tenant_id, conversation_id, oldest_first=True)
        ]


def assemble_ephemeral_context(
    state: EphemeralState,
    branch_id: str,
    max_messages: int = DEFAULT_MAX_MESSAGES,
    include_ancestor_facts: bool = True,
    max_ancestor_depth: int = DEFAULT_MAX_ANCESTOR_DEPTH,
) -> BranchContext:
    """Same as ``ContextAssembler.get`` but over ephemeral state.

    Raises:
        NotFoundError: If the branch is not in the state.
    """

    def lookup(node_id: str) -> _Node | None:
        branch = state.get_branch(node_id)
        if branch is None:
            return None
        return _Node(branch.id, branch.topic, branch.parent_id, branch.facts)

    node = lookup(branch_id)
    if node is None:
        raise NotFoundError(f"Branch not found: {branch_id}")

    messages = state.branch_messages(branch_id)
    if max_messages > 0:
        messages = messages[-max_messages:]
    else:
        messages = []
    return BranchContext(
        branch_id=node.id,
        branch_topic=node.topic,
        messages=[ContextMessage(m.id, m.role, m.content) for m in messages],
        all_facts=_walk_ancestors(node, lookup, include_ancestor_facts, max_ancestor_depth),
    )


def format_context_for_prompt(context: BranchContext) -> str:
    """Render a ``<context>`` block for a downstream model prompt.

    Returns an empty string when there are no facts and no messages.
    """
    parts: list[str] = []

    fact_blocks = [b for b in context.all_facts if b.facts]
    if fact_blocks:
        parts.append("## Known facts")
        for block in fact_blocks:
            label = "current" if block.is_current else "from earlier topic"
            parts.append(f"### {block.branch_topic} ({label})")
            for key, values in block.facts.items():
                parts.append(f"- {key}: {', '.join(v.value for v in values)}")

    if context.messages:
        if parts:
            parts.append("")
        parts.append(f"## Conversation: {context.branch_topic}")
        for message in context.messages:
            parts.append(f"{message.role.upper()}: {message.content}")

    if not parts:
        return ""
    return "<context>\n" + "\n".join(parts) + "\n</context>"
