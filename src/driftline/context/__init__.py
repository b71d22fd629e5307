"""Branch context assembly for downstream prompts."""

from .assembler import (
    BranchContext,
    BranchFacts,
    ContextAssembler,
    ContextMessage,
    assemble_ephemeral_context,
    format_context_for_prompt,
)

__all__ = [
    "BranchContext",
    "BranchFacts",
    "ContextAssembler",
    "ContextMessage",
    "assemble_ephemeral_context",
    "format_context_for_prompt",
]
