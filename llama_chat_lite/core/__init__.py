"""
Core generation module.

Provides:
- GenerationLoop: Prompt ingestion and token-by-token sampling
- GenerationState: Loop state machine
- GenerationResult / FinishReason: Outcome of one call
- PromptSegment: Markup or content piece of a rendered prompt
"""

from llama_chat_lite.core.generation import (
    FinishReason,
    GenerationLoop,
    GenerationResult,
    GenerationState,
    PromptSegment,
)

__all__ = [
    "FinishReason",
    "GenerationLoop",
    "GenerationResult",
    "GenerationState",
    "PromptSegment",
]
