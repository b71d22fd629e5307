"""Types shared by the routing pipeline.

The classifier's decision is a tagged union with one variant per action:
``StayDecision``, ``RouteDecision`` (carries the resolved target branch id)
and ``BranchDecision`` (carries the new topic label). Each variant only has
the fields valid for its action.

``DriftContext`` is immutable. Every pipeline stage returns a new context
built with ``dataclasses.replace`` instead of mutating the one it was given.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar

from ..config import DriftPolicy
from ..facts.models import ExtractedFact
from ..store.models import Branch, Message

DEFAULT_TENANT = "anonymous"
FALLBACK_TOPIC = "New Topic"


class RouteAction(Enum):
    """The three routing actions."""

    STAY = "STAY"
    ROUTE = "ROUTE"
    BRANCH = "BRANCH"


@dataclass(frozen=True)
class StayDecision:
    """Continue the current branch."""

    action: ClassVar[RouteAction] = RouteAction.STAY


@dataclass(frozen=True)
class RouteDecision:
    """Switch to an existing branch."""

    target_branch_id: str
    action: ClassVar[RouteAction] = RouteAction.ROUTE


@dataclass(frozen=True)
class BranchDecision:
    """Open a new branch with the given topic label."""

    topic: str
    action: ClassVar[RouteAction] = RouteAction.BRANCH


Decision = StayDecision | RouteDecision | BranchDecision


@dataclass(frozen=True)
class TokenUsage:
    """Token counters reported by the classifier provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TokenUsage":
        if not data:
            return cls()
        return cls(
            input_tokens=int(data.get("inputTokens", 0)),
            output_tokens=int(data.get("outputTokens", 0)),
            total_tokens=int(data.get("totalTokens", 0)),
        )


@dataclass(frozen=True)
class Classification:
    """A validated classification.

    Attributes:
        decision: The routing decision variant.
        reason: Natural-language reason from the classifier.
        confidence: Classifier confidence, 0.0 to 1.0.
        branch_context: One-sentence summary for the target branch, present
            only when fact extraction was requested.
        facts: Extracted facts, None when extraction was not requested.
        guards: Reason codes for fallbacks applied while validating.
        raw_decision: The classifier's decision before validation.
        token_usage: Token counters for the classifier call, if one was made.
        model: Model that produced the decision.
    """

    decision: Decision
    reason: str
    confidence: float
    branch_context: str | None = None
    facts: tuple[ExtractedFact, ...] | None = None
    guards: tuple[str, ...] = ()
    raw_decision: dict[str, Any] | None = None
    token_usage: TokenUsage | None = None
    model: str | None = None

    @property
    def action(self) -> RouteAction:
        return self.decision.action


@dataclass(frozen=True)
class BranchSummary:
    """What the classifier sees of one branch."""

    id: str
    topic: str
    message_count: int
    is_current: bool
    context: str | None = None
    fact_keys: tuple[str, ...] = ()


@dataclass(frozen=True)
class RecentMessage:
    """A message from the current branch's continuity window."""

    role: str
    content: str


@dataclass(frozen=True)
class DriftInput:
    """Input for one routing request.

    Attributes:
        conversation_id: Conversation the message belongs to.
        content: Message text.
        role: 'user' or 'assistant'.
        current_branch_id: Explicit current branch, overrides the stored pointer.
        tenant_id: Owning tenant, part of the conversation key.
        extract_facts: Request fact extraction; None uses the configured default.
        policy: Per-request policy override.
        routing_model: Per-request classifier model override.
    """

    conversation_id: str
    content: str
    role: str = "user"
    current_branch_id: str | None = None
    tenant_id: str = DEFAULT_TENANT
    extract_facts: bool | None = None
    policy: DriftPolicy | None = None
    routing_model: str | None = None


@dataclass(frozen=True)
class DriftContext:
    """Immutable pipeline context threaded through the stages."""

    conversation_id: str
    content: str
    role: str
    tenant_id: str = DEFAULT_TENANT
    current_branch_id: str | None = None
    extract_facts: bool = False
    policy: DriftPolicy = field(default_factory=DriftPolicy)
    routing_model: str | None = None
    request_id: str = ""

    reason_codes: tuple[str, ...] = ()
    current_branch: Branch | None = None
    branches: tuple[BranchSummary, ...] = ()
    recent_messages: tuple[RecentMessage, ...] = ()
    embedding: tuple[float, ...] | None = None
    classification: Classification | None = None

    message: Message | None = None
    branch: Branch | None = None

    def advance(self, *codes: str, **changes: Any) -> "DriftContext":
        """Return a new context with extra reason codes and field changes."""
        return replace(self, reason_codes=self.reason_codes + codes, **changes)

    @property
    def current_summary(self) -> BranchSummary | None:
        return next((b for b in self.branches if b.is_current), None)

    @property
    def other_summaries(self) -> tuple[BranchSummary, ...]:
        return tuple(b for b in self.branches if not b.is_current)


@dataclass(frozen=True)
class DriftResult:
    """Result returned to the caller of the pipeline."""

    action: RouteAction
    branch_id: str
    message_id: str
    is_new_branch: bool
    reason: str
    branch_topic: str
    confidence: float
    reason_codes: tuple[str, ...]
    previous_branch_id: str | None = None
    token_usage: TokenUsage | None = None
    model: str | None = None
    facts: tuple[ExtractedFact, ...] | None = None
    branch_context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "action": self.action.value,
            "branchId": self.branch_id,
            "messageId": self.message_id,
            "isNewBranch": self.is_new_branch,
            "reason": self.reason,
            "branchTopic": self.branch_topic,
            "confidence": self.confidence,
            "reasonCodes": list(self.reason_codes),
        }
        if self.previous_branch_id is not None:
            data["previousBranchId"] = self.previous_branch_id
        if self.token_usage is not None:
            data["tokenUsage"] = self.token_usage.to_dict()
        if self.model is not None:
            data["model"] = self.model
        if self.facts is not None:
            data["facts"] = [f.to_dict() for f in self.facts]
        if self.branch_context is not None:
            data["branchContext"] = self.branch_context
        return data
