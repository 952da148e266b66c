"""
Pytest configuration and shared fixtures for llama-chat-lite tests.

This module provides reusable fixtures for testing, including:
- Scripted toy engine (backend, model, context)
- Initialized chat sessions on the toy engine
- Real model name for integration tests (Qwen2.5 instruct, CPU only)
"""

import os

import pytest

from llama_chat_lite.chat.session import ChatSession
from llama_chat_lite.config import ContextParams, ModelParams
from llama_chat_lite.sampling.sampling import SamplingParams
from tests.utils.toy_engine import ToyBackend, ToyContext, ToyModel

# Force CPU-only testing by disabling CUDA
os.environ["CUDA_VISIBLE_DEVICES"] = ""

DEFAULT_REPLY = "4<|eot_id|>"


@pytest.fixture
def toy_backend() -> ToyBackend:
    """Toy backend whose contexts reply "4" then end the turn."""
    return ToyBackend(reply=DEFAULT_REPLY)


@pytest.fixture
def toy_model() -> ToyModel:
    return ToyModel(reply=DEFAULT_REPLY)


@pytest.fixture
def toy_context(toy_model: ToyModel) -> ToyContext:
    """Toy context with a 64-position window."""
    return toy_model.create_context(ContextParams(context_size=64))


@pytest.fixture
def greedy_params() -> SamplingParams:
    """Greedy sampling with every filter disabled."""
    return SamplingParams(
        max_tokens=32,
        temperature=0.0,
        top_k=0,
        top_p=1.0,
        repetition_penalty=1.0,
    )


@pytest.fixture
def chat_session(toy_backend: ToyBackend) -> ChatSession:
    """Chat session with model and context initialized on the toy backend."""
    session = ChatSession(backend=toy_backend, seed=1234)
    session.initialize_model("toy-model", ModelParams())
    session.initialize_context(ContextParams(context_size=512))
    yield session
    session.close()


@pytest.fixture(scope="session")
def qwen_model_name() -> str:
    """
    Return the instruct model name used for integration testing.

    Returns:
        str: HuggingFace model name
    """
    return "Qwen/Qwen2.5-0.5B-Instruct"
