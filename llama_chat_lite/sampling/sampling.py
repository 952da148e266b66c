"""
Sampling strategies for text generation.

This module turns one decode step's logits into a committed token. The
pipeline order is fixed: penalties, top-k, top-p, temperature, then a draw
from the resulting categorical distribution. Changing the order changes the
output distribution.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import torch

from llama_chat_lite.errors import ConfigurationError, SamplingError

# At or below this temperature the draw is replaced by argmax
GREEDY_TEMPERATURE = 1e-5


@dataclass
class SamplingParams:
    """Parameters for sampling strategies.

    Disabled states: top_k=0 (or >= vocab size), top_p=1.0,
    repetition_penalty=1.0, frequency_penalty=0.0, presence_penalty=0.0.

    Attributes:
        max_tokens: Maximum number of tokens generated per call.
        temperature: Softmax temperature; <= 1e-5 means greedy.
        top_k: Keep only the k highest-scoring tokens.
        top_p: Keep the smallest prefix with cumulative probability >= top_p.
        repetition_penalty: Divides positive / multiplies negative scores of
            tokens in the penalty window.
        frequency_penalty: Subtracted once per occurrence in the window.
        presence_penalty: Subtracted once per distinct token in the window.
        penalty_window: Recent tokens the penalties apply to, oldest first.
        penalty_last_n: When > 0, generated tokens are appended to the window
            and only the last n are kept. 0 keeps the window fixed.
        seed: Reseed the sampler at the start of each generation call.
    """

    max_tokens: int = 1000
    temperature: float = 0.8
    top_k: int = 45
    top_p: float = 0.95
    repetition_penalty: float = 1.1
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    penalty_window: List[int] = field(default_factory=list)
    penalty_last_n: int = 0
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        # Accept Token objects as well as plain ids
        self.penalty_window = [int(t) for t in self.penalty_window]
        self._validate()

    def _validate(self) -> None:
        """Validate sampling parameters.

        Raises:
            ConfigurationError: If a parameter is out of range.
        """
        if self.max_tokens <= 0:
            raise ConfigurationError(
                f"max_tokens must be positive, got {self.max_tokens}"
            )
        if self.temperature < 0.0:
            raise ConfigurationError(
                f"temperature must be non-negative, got {self.temperature}"
            )
        if self.top_k < 0:
            raise ConfigurationError(f"top_k must be non-negative, got {self.top_k}")
        if not 0.0 < self.top_p <= 1.0:
            raise ConfigurationError(f"top_p must be in (0, 1], got {self.top_p}")
        if self.repetition_penalty <= 0.0:
            raise ConfigurationError(
                f"repetition_penalty must be positive, got {self.repetition_penalty}"
            )
        if self.penalty_last_n < 0:
            raise ConfigurationError(
                f"penalty_last_n must be non-negative, got {self.penalty_last_n}"
            )

    def penalties_enabled(self) -> bool:
        """Check whether any penalty would change the logits."""
        return bool(self.penalty_window) and (
            self.repetition_penalty != 1.0
            or self.frequency_penalty != 0.0
            or self.presence_penalty != 0.0
        )


def apply_penalties(
    logits: torch.Tensor,
    penalty_window: Sequence[int],
    repetition_penalty: float = 1.0,
    frequency_penalty: float = 0.0,
    presence_penalty: float = 0.0,
) -> torch.Tensor:
    """Apply repetition, frequency and presence penalties.

    Returns the input tensor itself when no penalty is active, otherwise a
    penalized copy. The input is never modified.
    """
    if not penalty_window:
        return logits
    if repetition_penalty == 1.0 and frequency_penalty == 0.0 and presence_penalty == 0.0:
        return logits

    window = torch.tensor(list(penalty_window), dtype=torch.long, device=logits.device)
    vocab_size = logits.shape[-1]
    if window.min().item() < 0 or window.max().item() >= vocab_size:
        raise ConfigurationError(
            f"penalty window contains token ids outside [0, {vocab_size})"
        )

    token_ids, counts = torch.unique(window, return_counts=True)

    logits = logits.clone()
    scores = logits[token_ids]
    scores = torch.where(scores > 0, scores / repetition_penalty, scores * repetition_penalty)
    scores = scores - counts.to(scores.dtype) * frequency_penalty - presence_penalty
    logits[token_ids] = scores

    return logits


def top_k_filter(logits: torch.Tensor, k: int) -> torch.Tensor:
    """Top-k filtering. Ties go to the lowest token id."""
    if k <= 0 or k >= logits.shape[-1]:
        return logits

    # Stable descending sort keeps equal scores in id order
    _, order = torch.sort(logits, descending=True, stable=True)
    keep = order[:k]

    mask = torch.full_like(logits, float("-inf"))
    mask[keep] = logits[keep]

    return mask


def top_p_filter(logits: torch.Tensor, p: float) -> torch.Tensor:
    """Top-p (nucleus) filtering.

    Keeps the smallest probability-sorted prefix whose cumulative probability
    reaches p. At least one candidate always survives.
    """
    if p >= 1.0:
        return logits

    probs = torch.softmax(logits.double(), dim=-1)
    sorted_probs, order = torch.sort(probs, descending=True, stable=True)
    cumulative_probs = torch.cumsum(sorted_probs, dim=-1)

    # First index whose cumulative probability reaches p, inclusive
    n_keep = int(torch.searchsorted(cumulative_probs, torch.tensor([p], dtype=torch.float64)).item()) + 1
    n_candidates = int(torch.isfinite(logits).sum().item())
    n_keep = max(1, min(n_keep, n_candidates))

    keep = order[:n_keep]
    mask = torch.full_like(logits, float("-inf"))
    mask[keep] = logits[keep]

    return mask


def temperature_scaling(logits: torch.Tensor, temperature: float) -> torch.Tensor:
    """Apply temperature scaling."""
    return logits / temperature


def greedy_sampling(logits: torch.Tensor) -> int:
    """Greedy sampling (argmax, first maximum on ties)."""
    return int(logits.argmax(dim=-1).item())


class Sampler:
    """Chooses one token per decode step.

    The random source is a torch.Generator, so a sampler built with a seed
    (or reseeded) produces reproducible draws. Passing a generator replaces
    the random source entirely.

    Attributes:
        vocab_size: Expected logits size, checked on every call when set.
        generator: Random source used for the categorical draw.
    """

    def __init__(
        self,
        vocab_size: Optional[int] = None,
        seed: Optional[int] = None,
        generator: Optional[torch.Generator] = None,
    ) -> None:
        self.vocab_size = vocab_size
        self.generator = generator if generator is not None else torch.Generator()
        if seed is not None:
            self.generator.manual_seed(seed)

    def reseed(self, seed: int) -> None:
        """Reset the random source to a fixed seed."""
        self.generator.manual_seed(seed)

    def filter_logits(self, logits: torch.Tensor, params: SamplingParams) -> torch.Tensor:
        """Run penalties, top-k and top-p; return the filtered logits.

        Raises:
            ConfigurationError: If logits do not match the vocabulary size.
            SamplingError: If no finite candidate remains.
        """
        if logits.dim() != 1:
            logits = logits.reshape(-1)
        if self.vocab_size is not None and logits.shape[-1] != self.vocab_size:
            raise ConfigurationError(
                f"logits size {logits.shape[-1]} does not match "
                f"vocabulary size {self.vocab_size}"
            )

        # Only NaN is replaced; masked -inf entries must stay masked
        nan_mask = torch.isnan(logits)
        if nan_mask.any():
            logits = logits.masked_fill(nan_mask, float("-inf"))

        logits = apply_penalties(
            logits,
            params.penalty_window,
            params.repetition_penalty,
            params.frequency_penalty,
            params.presence_penalty,
        )
        logits = top_k_filter(logits, params.top_k)
        logits = top_p_filter(logits, params.top_p)

        if not torch.isfinite(logits).any():
            raise SamplingError("no candidate tokens left after filtering")

        return logits

    def sample(self, logits: torch.Tensor, params: SamplingParams) -> int:
        """Sample next token using specified parameters.

        Args:
            logits: Scores for one position, shape [vocab_size].
            params: Sampling parameters.

        Returns:
            The chosen token id.
        """
        logits = self.filter_logits(logits, params)

        if params.temperature <= GREEDY_TEMPERATURE:
            return greedy_sampling(logits)

        # The generator lives on the CPU
        logits = temperature_scaling(logits.double().cpu(), params.temperature)
        probs = torch.softmax(logits, dim=-1)
        if not torch.isfinite(probs).all() or probs.sum().item() <= 0.0:
            raise SamplingError("degenerate probability distribution")

        return int(torch.multinomial(probs, num_samples=1, generator=self.generator).item())


def sample(
    logits: torch.Tensor,
    params: SamplingParams,
    generator: Optional[torch.Generator] = None,
) -> int:
    """Sample one token with a throwaway Sampler."""
    return Sampler(generator=generator).sample(logits, params)

