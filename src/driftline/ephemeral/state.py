"""In-memory conversation state for the ephemeral variant."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..facts.models import FactMap, active_facts, fact_map_from_dict, fact_map_to_dict
from ..routing.types import BranchSummary, TokenUsage


@dataclass
class EphemeralBranch:
    """A branch held in ephemeral state.

    Attributes:
        id: Deterministic id, ``<conversation>-branch-<n>``.
        topic: User-facing label, never renamed after creation.
        parent_id: Branch that was current when this one was opened.
        depth: 0 for a root branch.
        message_count: Messages assigned to this branch.
        context: Evolving one-sentence summary, if fact extraction ran.
        facts: Key to value-entry history.
        last_active_index: Index of the last message routed here.
        placeholder: Default branch opened before any user topic existed.
            It never becomes a parent and is not offered to the classifier.
    """

    id: str
    topic: str
    parent_id: str | None = None
    depth: int = 0
    message_count: int = 0
    context: str | None = None
    facts: FactMap = field(default_factory=dict)
    last_active_index: int = -1
    placeholder: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "parentId": self.parent_id,
            "depth": self.depth,
            "messageCount": self.message_count,
            "context": self.context,
            "facts": fact_map_to_dict(self.facts),
            "lastActiveIndex": self.last_active_index,
            "placeholder": self.placeholder,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EphemeralBranch":
        return cls(
            id=data["id"],
            topic=data["topic"],
            parent_id=data.get("parentId"),
            depth=int(data.get("depth", 0)),
            message_count=int(data.get("messageCount", 0)),
            context=data.get("context"),
            facts=fact_map_from_dict(data.get("facts") or {}),
            last_active_index=int(data.get("lastActiveIndex", -1)),
            placeholder=bool(data.get("placeholder", False)),
        )


@dataclass
class EphemeralMessage:
    """A routed message in ephemeral state."""

    id: str
    role: str
    content: str
    branch_id: str
    branch_topic: str
    action: str
    reason: str = ""
    confidence: float = 1.0
    reason_codes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "branchId": self.branch_id,
            "branchTopic": self.branch_topic,
            "action": self.action,
            "reason": self.reason,
            "confidence": self.confidence,
            "reasonCodes": list(self.reason_codes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EphemeralMessage":
        return cls(
            id=data["id"],
            role=data["role"],
            content=data["content"],
            branch_id=data["branchId"],
            branch_topic=data.get("branchTopic", ""),
            action=data["action"],
            reason=data.get("reason", ""),
            confidence=float(data.get("confidence", 1.0)),
            reason_codes=list(data.get("reasonCodes") or []),
        )


@dataclass
class EphemeralState:
    """Opaque state blob returned to, and resumed from, the caller."""

    conversation_id: str
    branches: list[EphemeralBranch] = field(default_factory=list)
    messages: list[EphemeralMessage] = field(default_factory=list)
    current_branch_id: str | None = None
    last_processed_index: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    routing_model: str | None = None

    def get_branch(self, branch_id: str | None) -> EphemeralBranch | None:
        if branch_id is None:
            return None
        return next((b for b in self.branches if b.id == branch_id), None)

    @property
    def current_branch(self) -> EphemeralBranch | None:
        return self.get_branch(self.current_branch_id)

    @property
    def current_branch_topic(self) -> str | None:
        branch = self.current_branch
        return branch.topic if branch else None

    def branch_messages(
        self, branch_id: str, role: str | None = None
    ) -> list[EphemeralMessage]:
        """Messages routed to a branch, oldest first."""
        return [
            m
            for m in self.messages
            if m.branch_id == branch_id and (role is None or m.role == role)
        ]

    def summaries(self) -> list[BranchSummary]:
        """Branch summaries, most recently active first."""
        ordered = sorted(self.branches, key=lambda b: b.last_active_index, reverse=True)
        return [
            BranchSummary(
                id=b.id,
                topic=b.topic,
                message_count=b.message_count,
                is_current=b.id == self.current_branch_id,
                context=b.context,
                fact_keys=tuple(active_facts(b.facts)),
            )
            for b in ordered
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "branches": [b.to_dict() for b in self.branches],
            "messages": [m.to_dict() for m in self.messages],
            "currentBranchId": self.current_branch_id,
            "currentBranchTopic": self.current_branch_topic,
            "lastProcessedIndex": self.last_processed_index,
            "routingTokenUsage": self.token_usage.to_dict(),
            "routingModel": self.routing_model,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EphemeralState":
        return cls(
            conversation_id=data["conversationId"],
            branches=[EphemeralBranch.from_dict(b) for b in data.get("branches") or []],
            messages=[EphemeralMessage.from_dict(m) for m in data.get("messages") or []],
            current_branch_id=data.get("currentBranchId"),
            last_processed_index=int(data.get("lastProcessedIndex", 0)),
            token_usage=TokenUsage.from_dict(data.get("routingTokenUsage")),
            routing_model=data.get("routingModel"),
        )


class StateStore(Protocol):
    """Keyed storage for ephemeral state.

    Callers hold ``lock(key)`` around a get/process/put cycle so two requests
    for the same conversation never interleave.
    """

    def get(self, key: str) -> EphemeralState | None: ...

    def put(self, key: str, state: EphemeralState) -> None: ...

    def delete(self, key: str) -> None: ...

    def lock(self, key: str) -> asyncio.Lock: ...


class InMemoryStateStore:
    """StateStore backed by a process-local dict."""

    def __init__(self) -> None:
        self._states: dict[str, EphemeralState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._states)

    def get(self, key: str) -> EphemeralState | None:
        return self._states.get(key)

    def put(self, key: str, state: EphemeralState) -> None:
        self._states[key] = state

    def delete(self, key: str) -> None:
        self._states.pop(key, None)
        self._locks.pop(key, None)

    def lock(self, key: str) -> asyncio.Lock:
        """Get the lock for a conversation key."""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]
