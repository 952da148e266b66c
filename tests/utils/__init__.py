"""Test utilities for llama_chat_lite."""

from tests.utils.toy_engine import (
    CONTROL_TOKENS,
    FILLER,
    ToyBackend,
    ToyContext,
    ToyModel,
)

__all__ = [
    "CONTROL_TOKENS",
    "FILLER",
    "ToyBackend",
    "ToyContext",
    "ToyModel",
]
