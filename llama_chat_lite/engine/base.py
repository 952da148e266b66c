"""
Abstract inference engine interface.

The chat layer never touches model weights directly. It talks to a
ModelHandle (vocabulary and tokenizer side) and a ContextHandle (stateful
decoding side), both produced by an EngineBackend. Tokens are submitted to a
context through a Batch, which pairs each token with its absolute position.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import torch

from llama_chat_lite.config import ContextParams, ModelParams
from llama_chat_lite.errors import EngineError


@dataclass(frozen=True)
class Token:
    """A vocabulary id with an optional cached text fragment.

    Token ids are model-specific and not portable across models.
    """

    token_id: int
    text: Optional[str] = None

    def __int__(self) -> int:
        return self.token_id


class Batch:
    """Batch buffer of (token, position, wants-logits) entries.

    A batch has a fixed capacity and must be released after use; adding to a
    released batch is an error. Use it as a context manager so release happens
    on every exit path.

    Attributes:
        capacity: Maximum number of entries.
        tokens: Token ids in submission order.
        positions: Absolute context position of each token.
        logits: Whether logits are requested for each entry.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise EngineError(f"batch capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.tokens: List[int] = []
        self.positions: List[int] = []
        self.logits: List[bool] = []
        self._released = False

    def add(self, token: int, position: int, logits: bool = False) -> None:
        """Append one entry.

        Raises:
            EngineError: If the batch is released or full.
        """
        if self._released:
            raise EngineError("batch has been released")
        if len(self.tokens) >= self.capacity:
            raise EngineError(f"batch is full (capacity {self.capacity})")
        self.tokens.append(int(token))
        self.positions.append(position)
        self.logits.append(logits)

    def clear(self) -> None:
        """Drop all entries, keeping the buffer."""
        self.tokens.clear()
        self.positions.clear()
        self.logits.clear()

    def release(self) -> None:
        """Free the buffer. Safe to call more than once."""
        self.clear()
        self._released = True

    @property
    def released(self) -> bool:
        return self._released

    @property
    def n_tokens(self) -> int:
        return len(self.tokens)

    def output_indices(self) -> List[int]:
        """Indices of entries that request logits."""
        return [i for i, wanted in enumerate(self.logits) if wanted]

    def __len__(self) -> int:
        return len(self.tokens)

    def __enter__(self) -> "Batch":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class ModelHandle(ABC):
    """Loaded model: vocabulary, tokenizer, and context factory."""

    @property
    @abstractmethod
    def vocab_size(self) -> int:
        """Number of logits produced per position."""
        pass

    @property
    @abstractmethod
    def eos_token(self) -> Optional[int]:
        """End-of-sequence token id, or None if the model has none."""
        pass

    @property
    def max_context(self) -> Optional[int]:
        """Largest context the model was trained for, if known."""
        return None

    @abstractmethod
    def tokenize(
        self, text: str, add_special: bool = True, parse_special: bool = False
    ) -> List[int]:
        """Convert text to token ids.

        Args:
            text: Text to tokenize
            add_special: Prepend the beginning-of-sequence token
            parse_special: Recognize control-token markup in text

        Returns:
            Token ids

        Raises:
            EngineError: If tokenization fails
        """
        pass

    @abstractmethod
    def detokenize_one(self, token: int) -> bytes:
        """Raw UTF-8 bytes for one token.

        The result may be empty or hold an incomplete UTF-8 sequence that is
        completed by the following tokens.
        """
        pass

    @abstractmethod
    def create_context(self, params: ContextParams) -> "ContextHandle":
        """Create a decoding context on top of this model.

        Raises:
            ConfigurationError: If a context cannot be created
        """
        pass

    def close(self) -> None:
        """Release model resources."""


class ContextHandle(ABC):
    """Stateful decoding context bound to one model."""

    @property
    @abstractmethod
    def model(self) -> ModelHandle:
        pass

    @property
    @abstractmethod
    def n_ctx(self) -> int:
        """Context window capacity in positions."""
        pass

    @abstractmethod
    def decode_batch(self, batch: Batch) -> torch.Tensor:
        """Run the model over a batch.

        Positions must be contiguous. A batch starting before the current end
        of the context discards the state from its first position onward.

        Returns:
            Logits of shape [n_requested, vocab_size] for entries that
            requested them, in batch order, as float32 on the CPU

        Raises:
            EngineError: If the batch is invalid or overflows the context, or
                the forward pass fails
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Forget all decoded state."""
        pass

    def close(self) -> None:
        """Release context resources."""


class EngineBackend(ABC):
    """Factory for ModelHandle instances."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def load_model(self, path: str, params: ModelParams) -> ModelHandle:
        """Load a model.

        Raises:
            ConfigurationError: If the path or parameters are invalid
        """
        pass
