"""Drift routing: classify each message as STAY, ROUTE or BRANCH."""

from .centroid import calculate_centroid
from .classifier import classify_route
from .llm import ClassifierResponse, GroqRouteClassifier, RouteClassifier
from .orchestrator import DriftOrchestrator, build_result
from .parser import parse_response
from .prompt import build_prompt
from .stages import PipelineDeps, bound_summaries
from .types import (
    BranchDecision,
    BranchSummary,
    Classification,
    Decision,
    DriftContext,
    DriftInput,
    DriftResult,
    RouteAction,
    RouteDecision,
    StayDecision,
    TokenUsage,
)

__all__ = [
    "BranchDecision",
    "BranchSummary",
    "Classification",
    "ClassifierResponse",
    "Decision",
    "DriftContext",
    "DriftInput",
    "DriftOrchestrator",
    "DriftResult",
    "GroqRouteClassifier",
    "PipelineDeps",
    "RouteAction",
    "RouteClassifier",
    "RouteDecision",
    "StayDecision",
    "TokenUsage",
    "bound_summaries",
    "build_prompt",
    "build_result",
    "calculate_centroid",
    "classify_route",
    "parse_response",
]
