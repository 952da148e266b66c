"""
Incremental generation loop.

Drives a ContextHandle from a formatted prompt to a terminated response:
the prompt is decoded as one batch, then tokens are sampled and fed back one
position at a time until a stop token, the token budget, the end of the
context window, or a caller cancellation ends the call.
"""

import codecs
import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, NamedTuple, Optional, Sequence, Union

from llama_chat_lite.engine.base import Batch, ContextHandle
from llama_chat_lite.errors import ContextOverflowError, EngineError, LlamaChatError
from llama_chat_lite.sampling.sampling import Sampler, SamplingParams

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[str], None]
StopPredicate = Callable[[], bool]


class GenerationState(Enum):
    """State of the generation loop."""

    IDLE = "idle"  # No call has run yet
    PROMPT_INGEST = "prompt_ingest"  # Prompt batch is being decoded
    SAMPLING = "sampling"  # Tokens are being sampled one at a time
    COMPLETED = "completed"  # Call ended normally
    OVERFLOWED = "overflowed"  # Context window exhausted
    FAILED = "failed"  # Engine, sampling or callback failure


class FinishReason(Enum):
    """Why a generation call ended."""

    STOP_TOKEN = "stop_token"
    MAX_TOKENS = "max_tokens"
    OVERFLOWED = "overflowed"
    CANCELLED = "cancelled"
    ERROR = "error"


class PromptSegment(NamedTuple):
    """A piece of a rendered prompt.

    Control-token markup is only recognized in markup segments. Content
    segments are tokenized as plain text.
    """

    text: str
    markup: bool = False


Prompt = Union[str, Sequence[PromptSegment]]


@dataclass
class GenerationResult:
    """Outcome of one generation call.

    Attributes:
        text: Decoded text of all generated tokens (stop token excluded)
        token_ids: Generated token ids
        n_prompt_tokens: Number of prompt tokens decoded
        finish_reason: Why generation ended
        error: The error for OVERFLOWED and ERROR results
    """

    text: str
    token_ids: List[int] = field(default_factory=list)
    n_prompt_tokens: int = 0
    finish_reason: FinishReason = FinishReason.STOP_TOKEN
    error: Optional[LlamaChatError] = None

    @property
    def ok(self) -> bool:
        """True unless the call overflowed or failed."""
        return self.finish_reason not in (FinishReason.OVERFLOWED, FinishReason.ERROR)

    @property
    def n_generated(self) -> int:
        return len(self.token_ids)


class GenerationLoop:
    """Runs prompt ingestion and token-by-token sampling on one context.

    Only one call may be in flight per loop; each call gets a fresh batch and
    position cursor that are discarded when it ends.

    Attributes:
        context: Context the loop decodes on
        sampler: Sampler choosing each token
        stop_tokens: End-of-turn token ids that end generation besides EOS
        state: Current GenerationState
    """

    def __init__(
        self,
        context: ContextHandle,
        sampler: Optional[Sampler] = None,
        stop_tokens: Iterable[int] = (),
    ) -> None:
        self.context = context
        self.sampler = sampler if sampler is not None else Sampler(vocab_size=context.model.vocab_size)
        self.stop_tokens = frozenset(int(t) for t in stop_tokens)
        self.state = GenerationState.IDLE

    def tokenize_prompt(self, prompt: Prompt, add_special: bool = False) -> List[int]:
        """Tokenize a prompt string or a sequence of prompt segments.

        Control-token markup is parsed in a prompt string and in markup
        segments. With add_special the model's beginning-of-sequence token is
        prepended once.
        """
        model = self.context.model
        if isinstance(prompt, str):
            return model.tokenize(prompt, add_special=add_special, parse_special=True)

        tokens: List[int] = []
        for segment in prompt:
            if segment.text:
                tokens.extend(
                    model.tokenize(
                        segment.text,
                        add_special=add_special and not tokens,
                        parse_special=segment.markup,
                    )
                )
        return tokens

    def is_stop_token(self, token: int) -> bool:
        return token == self.context.model.eos_token or token in self.stop_tokens

    def run(
        self,
        prompt: Prompt,
        params: Optional[SamplingParams] = None,
        on_fragment: Optional[FragmentCallback] = None,
        should_stop: Optional[StopPredicate] = None,
        add_special: bool = False,
    ) -> GenerationResult:
        """Generate a response to a formatted prompt.

        Args:
            prompt: Formatted prompt text, or template segments
            params: Sampling parameters (defaults if None)
            on_fragment: Called with each decoded text fragment
            should_stop: Polled before each sampling step; returning True
                ends the call with FinishReason.CANCELLED
            add_special: Prepend the beginning-of-sequence token to the prompt

        Returns:
            GenerationResult. Engine, sampling and configuration failures are
            reported with FinishReason.ERROR and never raised. Exceptions from
            on_fragment or should_stop propagate.

        Raises:
            EngineError: If a call is already in flight on this loop
        """
        if self.state in (GenerationState.PROMPT_INGEST, GenerationState.SAMPLING):
            raise EngineError("a generation call is already in flight on this context")
        if params is None:
            params = SamplingParams()

        self.state = GenerationState.PROMPT_INGEST
        model = self.context.model
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pieces: List[str] = []
        generated: List[int] = []
        n_prompt = 0
        batch: Optional[Batch] = None

        def emit(text: str) -> None:
            if text:
                pieces.append(text)
                if on_fragment is not None:
                    on_fragment(text)

        try:
            if params.seed is not None:
                self.sampler.reseed(params.seed)

            tokens = self.tokenize_prompt(prompt, add_special)
            n_prompt = len(tokens)
            if n_prompt == 0:
                raise EngineError("prompt produced no tokens")

            n_ctx = self.context.n_ctx
            if n_prompt > n_ctx:
                return self._finish(
                    FinishReason.OVERFLOWED, pieces, generated, n_prompt,
                    ContextOverflowError(
                        f"prompt of {n_prompt} tokens does not fit context of {n_ctx}"
                    ),
                )

            batch = Batch(n_prompt)
            for pos, token in enumerate(tokens):
                batch.add(token, pos, logits=(pos == n_prompt - 1))
            logits = self.context.decode_batch(batch)
            n_cur = n_prompt

            self.state = GenerationState.SAMPLING
            step_params = params
            window = list(params.penalty_window)

            while True:
                if should_stop is not None and should_stop():
                    reason = FinishReason.CANCELLED
                    break

                token = self.sampler.sample(logits[-1], step_params)
                if self.is_stop_token(token):
                    reason = FinishReason.STOP_TOKEN
                    break

                generated.append(token)
                emit(decoder.decode(model.detokenize_one(token)))

                if params.penalty_last_n > 0:
                    window = (window + [token])[-params.penalty_last_n:]
                    step_params = dataclasses.replace(params, penalty_window=window)

                if len(generated) >= params.max_tokens:
                    reason = FinishReason.MAX_TOKENS
                    break
                if n_cur >= n_ctx:
                    reason = FinishReason.OVERFLOWED
                    break

                batch.clear()
                batch.add(token, n_cur, logits=True)
                logits = self.context.decode_batch(batch)
                n_cur += 1

            # Bytes of a character cut off by the end of generation are dropped
            decoder.reset()

            error = None
            if reason is FinishReason.OVERFLOWED:
                error = ContextOverflowError(
                    f"context of {n_ctx} positions exhausted after "
                    f"{len(generated)} generated tokens",
                    partial_text="".join(pieces),
                )
            return self._finish(reason, pieces, generated, n_prompt, error)

        except LlamaChatError as e:
            logger.warning("Generation failed after %d tokens: %s", len(generated), e)
            return self._finish(FinishReason.ERROR, pieces, generated, n_prompt, e)

        finally:
            if batch is not None:
                batch.release()
            if self.state in (GenerationState.PROMPT_INGEST, GenerationState.SAMPLING):
                self.state = GenerationState.FAILED

    def _finish(
        self,
        reason: FinishReason,
        pieces: List[str],
        generated: List[int],
        n_prompt: int,
        error: Optional[LlamaChatError] = None,
    ) -> GenerationResult:
        if reason is FinishReason.ERROR:
            self.state = GenerationState.FAILED
        elif reason is FinishReason.OVERFLOWED:
            self.state = GenerationState.OVERFLOWED
        else:
            self.state = GenerationState.COMPLETED

        logger.debug(
            "Generation finished: reason=%s prompt_tokens=%d generated=%d",
            reason.value, n_prompt, len(generated),
        )
        return GenerationResult(
            text="".join(pieces),
            token_ids=list(generated),
            n_prompt_tokens=n_prompt,
            finish_reason=reason,
            error=error,
        )
