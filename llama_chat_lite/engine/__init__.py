"""
Inference engine interface and backends.

Provides:
- Token, Batch: Token ids and the positional batch buffer
- ModelHandle, ContextHandle, EngineBackend: Abstract engine interface
- ScopedHandle, EngineResources: Ownership of model/context handles
- TransformersBackend: HuggingFace transformers implementation
"""

from llama_chat_lite.engine.base import (
    Batch,
    ContextHandle,
    EngineBackend,
    ModelHandle,
    Token,
)
from llama_chat_lite.engine.handle import EngineResources, ScopedHandle
from llama_chat_lite.engine.transformers_backend import (
    TransformersBackend,
    TransformersContext,
    TransformersModel,
)

__all__ = [
    "Batch",
    "ContextHandle",
    "EngineBackend",
    "EngineResources",
    "ModelHandle",
    "ScopedHandle",
    "Token",
    "TransformersBackend",
    "TransformersContext",
    "TransformersModel",
]
