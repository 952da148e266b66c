"""
llama_chat_lite: A conversational session layer for autoregressive LLMs.

This package provides:
- Sampling pipeline (penalties, top-k, top-p, temperature, seeded draws)
- Generation loop with explicit context-window bookkeeping
- Multi-turn chat sessions with chat templates
- Streaming output with control tokens filtered out
- A HuggingFace transformers engine backend
"""

import logging

from llama_chat_lite.chat import (
    ChatMLTemplate,
    ChatSession,
    Llama3ChatTemplate,
    Message,
    Role,
    StreamFilter,
)
from llama_chat_lite.config import ChatSettings, ContextParams, ModelParams
from llama_chat_lite.core import FinishReason, GenerationLoop, GenerationResult
from llama_chat_lite.engine import Token
from llama_chat_lite.errors import (
    ConfigurationError,
    ContextOverflowError,
    EngineError,
    LlamaChatError,
    SamplingError,
    TemplateError,
)
from llama_chat_lite.sampling import Sampler, SamplingParams

__version__ = "0.1.0"
__author__ = "llama-chat-lite contributors"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ChatMLTemplate",
    "ChatSession",
    "ChatSettings",
    "ConfigurationError",
    "ContextOverflowError",
    "ContextParams",
    "EngineError",
    "FinishReason",
    "GenerationLoop",
    "GenerationResult",
    "Llama3ChatTemplate",
    "LlamaChatError",
    "Message",
    "ModelParams",
    "Role",
    "Sampler",
    "SamplingError",
    "SamplingParams",
    "StreamFilter",
    "TemplateError",
    "Token",
]
