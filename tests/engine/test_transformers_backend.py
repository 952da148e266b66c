"""
Tests for the transformers-backed engine.

Unit tests cover the byte mapping and device selection. Integration tests
load a small instruct model from the HuggingFace Hub and are skipped when it
cannot be loaded.
"""

import pytest
import torch

from llama_chat_lite.chat.session import ChatSession
from llama_chat_lite.chat.template import ChatMLTemplate
from llama_chat_lite.config import ContextParams, ModelParams
from llama_chat_lite.engine.base import Batch
from llama_chat_lite.engine.transformers_backend import (
    TransformersBackend,
    _bytes_to_unicode,
    _resolve_device,
)
from llama_chat_lite.errors import ConfigurationError, EngineError
from llama_chat_lite.sampling.sampling import SamplingParams


@pytest.mark.unit
def test_bytes_to_unicode_is_bijective():
    mapping = _bytes_to_unicode()
    assert sorted(mapping) == list(range(256))
    assert len(set(mapping.values())) == 256
    assert mapping[ord("A")] == "A"
    # Space is remapped to a printable character
    assert mapping[ord(" ")] == "Ġ"


@pytest.mark.unit
def test_resolve_device():
    assert _resolve_device(ModelParams()) == "cpu"
    assert _resolve_device(ModelParams(device="meta")) == "meta"
    expected = "cuda" if torch.cuda.is_available() else "cpu"
    assert _resolve_device(ModelParams(gpu_layers=99)) == expected


@pytest.mark.unit
def test_empty_path_rejected():
    with pytest.raises(ConfigurationError):
        TransformersBackend().load_model("", ModelParams())


@pytest.mark.unit
def test_backend_name():
    assert TransformersBackend().name == "transformers"


@pytest.fixture(scope="module")
def qwen_model(qwen_model_name):
    try:
        model = TransformersBackend().load_model(qwen_model_name, ModelParams())
    except ConfigurationError as e:
        pytest.skip(f"model unavailable: {e}")
    yield model
    model.close()


@pytest.mark.slow
@pytest.mark.integration
def test_tokenize_round_trip(qwen_model):
    ids = qwen_model.tokenize("Hello, world! héllo ✓", add_special=False)
    text = b"".join(qwen_model.detokenize_one(t) for t in ids).decode("utf-8")
    assert text == "Hello, world! héllo ✓"


@pytest.mark.slow
@pytest.mark.integration
def test_control_tokens_parsed_only_on_request(qwen_model):
    parsed = qwen_model.tokenize("<|im_end|>", add_special=False, parse_special=True)
    plain = qwen_model.tokenize("<|im_end|>", add_special=False, parse_special=False)
    assert len(parsed) == 1
    assert len(plain) > 1


@pytest.mark.slow
@pytest.mark.integration
def test_decode_batch_returns_requested_rows(qwen_model):
    context = qwen_model.create_context(ContextParams(context_size=64, batch_size=2))
    ids = qwen_model.tokenize("The capital of France is", add_special=False)

    with Batch(len(ids)) as batch:
        for pos, token in enumerate(ids):
            batch.add(token, pos, logits=(pos == len(ids) - 1))
        chunked = context.decode_batch(batch)

    assert chunked.shape == (1, qwen_model.vocab_size)
    assert chunked.dtype == torch.float32
    assert context.n_past == len(ids)

    # Micro-batched decoding matches a single forward pass
    whole = qwen_model.create_context(ContextParams(context_size=64))
    with Batch(len(ids)) as batch:
        for pos, token in enumerate(ids):
            batch.add(token, pos, logits=(pos == len(ids) - 1))
        again = whole.decode_batch(batch)
    assert torch.allclose(chunked, again, atol=1e-2)


@pytest.mark.slow
@pytest.mark.integration
def test_decode_rejects_gap(qwen_model):
    context = qwen_model.create_context(ContextParams(context_size=16))
    with Batch(1) as batch:
        batch.add(0, 5, logits=True)
        with pytest.raises(EngineError):
            context.decode_batch(batch)


@pytest.mark.slow
@pytest.mark.integration
def test_chat_session_end_to_end(qwen_model_name):
    session = ChatSession(template=ChatMLTemplate(), seed=0)
    try:
        session.initialize_model(qwen_model_name)
    except ConfigurationError as e:
        pytest.skip(f"model unavailable: {e}")

    with session:
        session.initialize_context(ContextParams(context_size=512))
        session.set_system_prompt("You are terse.")
        fragments = []

        reply = session.submit(
            "2+2?", SamplingParams(max_tokens=5, temperature=0.0), fragments.append
        )

        assert len(session.last_result.token_ids) <= 5
        assert "".join(fragments) == reply
        assert all("<|im_" not in f for f in fragments)

        tokens = session.encode("Hello, world!", add_special=False)
        assert "".join(t.text for t in tokens) == "Hello, world!"
