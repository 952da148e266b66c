"""
Tests for Batch and Token.
"""

import pytest

from llama_chat_lite.engine.base import Batch, Token
from llama_chat_lite.errors import EngineError


@pytest.mark.unit
def test_add_entries():
    batch = Batch(4)
    batch.add(10, 0)
    batch.add(Token(11), 1, logits=True)

    assert batch.tokens == [10, 11]
    assert batch.positions == [0, 1]
    assert batch.logits == [False, True]
    assert batch.n_tokens == len(batch) == 2
    assert batch.output_indices() == [1]


@pytest.mark.unit
def test_capacity_enforced():
    batch = Batch(1)
    batch.add(1, 0)
    with pytest.raises(EngineError):
        batch.add(2, 1)


@pytest.mark.unit
@pytest.mark.parametrize("capacity", [0, -1])
def test_invalid_capacity(capacity):
    with pytest.raises(EngineError):
        Batch(capacity)


@pytest.mark.unit
def test_clear_keeps_buffer_usable():
    batch = Batch(1)
    batch.add(1, 0)
    batch.clear()
    batch.add(2, 1, logits=True)
    assert batch.tokens == [2]


@pytest.mark.unit
def test_add_after_release():
    batch = Batch(2)
    batch.release()
    batch.release()
    assert batch.released
    with pytest.raises(EngineError):
        batch.add(1, 0)


@pytest.mark.unit
def test_context_manager_releases():
    with Batch(2) as batch:
        batch.add(1, 0)
    assert batch.released
    assert batch.n_tokens == 0


@pytest.mark.unit
def test_token_int():
    token = Token(42, "hi")
    assert int(token) == 42
    assert token.text == "hi"
    assert Token(42) == Token(42, None)
