"""
Token sampling strategies.

Provides:
- SamplingParams: Sampling configuration dataclass
- Sampler: Seedable sampler running the fixed pipeline
- Penalties: Repetition, frequency, presence
- Filters: Top-k, top-p, temperature, greedy
"""

from llama_chat_lite.sampling.sampling import (
    GREEDY_TEMPERATURE,
    Sampler,
    SamplingParams,
    apply_penalties,
    greedy_sampling,
    sample,
    temperature_scaling,
    top_k_filter,
    top_p_filter,
)

__all__ = [
    "GREEDY_TEMPERATURE",
    "Sampler",
    "SamplingParams",
    "apply_penalties",
    "greedy_sampling",
    "sample",
    "temperature_scaling",
    "top_k_filter",
    "top_p_filter",
]
