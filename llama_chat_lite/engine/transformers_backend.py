"""
Inference engine backed by HuggingFace transformers.

TransformersModel loads a causal LM and its tokenizer; TransformersContext
keeps the KV cache (past_key_values) for one conversation and decodes batches
at explicit positions.
"""

import logging
import re
from typing import Dict, List, Optional

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer

from llama_chat_lite.config import ContextParams, ModelParams
from llama_chat_lite.engine.base import Batch, ContextHandle, EngineBackend, ModelHandle
from llama_chat_lite.errors import ConfigurationError, EngineError

logger = logging.getLogger(__name__)

_SENTENCEPIECE_SPACE = "▁"
_BYTE_FALLBACK = re.compile(r"^<0x([0-9A-Fa-f]{2})>$")


def _bytes_to_unicode() -> Dict[int, str]:
    """Byte-level BPE alphabet: maps every byte to a printable character."""
    bs = (
        list(range(ord("!"), ord("~") + 1))
        + list(range(ord("¡"), ord("¬") + 1))
        + list(range(ord("®"), ord("ÿ") + 1))
    )
    cs = bs[:]
    n = 0
    for b in range(256):
        if b not in bs:
            bs.append(b)
            cs.append(256 + n)
            n += 1
    return dict(zip(bs, (chr(c) for c in cs)))


_BYTE_DECODER = {ch: b for b, ch in _bytes_to_unicode().items()}


def _resolve_device(params: ModelParams) -> str:
    if params.device:
        return params.device
    if params.gpu_layers > 0:
        if torch.cuda.is_available():
            return "cuda"
        logger.warning("gpu_layers=%d requested but CUDA is unavailable; using CPU", params.gpu_layers)
    return "cpu"


class TransformersModel(ModelHandle):
    """Causal LM and tokenizer loaded with transformers.

    Attributes:
        path: HuggingFace model name or local directory.
        tokenizer: Loaded tokenizer.
        hf_model: Loaded model, or None for vocabulary-only loads.
        device: Torch device the model lives on.
    """

    def __init__(self, path: str, params: ModelParams) -> None:
        """Load tokenizer and (unless vocabulary_only) model weights.

        Raises:
            ConfigurationError: If the path is empty or loading fails
        """
        if not path:
            raise ConfigurationError("model path cannot be empty")

        self.path = path
        self.device = _resolve_device(params)

        if params.lock_in_ram:
            logger.warning("lock_in_ram is not supported by the transformers backend; ignoring")

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(path, trust_remote_code=True)

            if params.vocabulary_only:
                self.hf_model = None
            else:
                self.hf_model = AutoModelForCausalLM.from_pretrained(
                    path,
                    torch_dtype=torch.float32,
                    low_cpu_mem_usage=params.use_memory_mapping,
                    trust_remote_code=True,
                )
                self.hf_model.to(self.device)
                self.hf_model.eval()
        except Exception as e:
            raise ConfigurationError(f"Failed to load model from {path}: {e}") from e

        self._special_ids = set(self.tokenizer.all_special_ids)
        self._special_ids.update(getattr(self.tokenizer, "added_tokens_decoder", {}).keys())
        self._sentencepiece = self._uses_sentencepiece()
        self._piece_cache: Dict[int, bytes] = {}

        logger.info(
            "Loaded %s on %s (vocab=%d, vocabulary_only=%s)",
            path, self.device, self.vocab_size, params.vocabulary_only,
        )

    def _uses_sentencepiece(self) -> bool:
        pieces = self.tokenizer.convert_ids_to_tokens(
            self.tokenizer.encode(" a", add_special_tokens=False)
        )
        return any(_SENTENCEPIECE_SPACE in (p or "") for p in pieces)

    @property
    def vocab_size(self) -> int:
        if self.hf_model is not None:
            return self.hf_model.get_output_embeddings().weight.shape[0]
        return len(self.tokenizer)

    @property
    def eos_token(self) -> Optional[int]:
        return self.tokenizer.eos_token_id

    @property
    def max_context(self) -> Optional[int]:
        if self.hf_model is None:
            return None
        return getattr(self.hf_model.config, "max_position_embeddings", None)

    def tokenize(
        self, text: str, add_special: bool = True, parse_special: bool = False
    ) -> List[int]:
        if text is None:
            raise EngineError("text cannot be None")
        try:
            encoded = self.tokenizer(
                text,
                add_special_tokens=add_special,
                split_special_tokens=not parse_special,
            )
        except Exception as e:
            raise EngineError(f"Tokenization failed: {e}") from e
        return list(encoded["input_ids"])

    def detokenize_one(self, token: int) -> bytes:
        piece = self._piece_cache.get(token)
        if piece is None:
            piece = self._token_bytes(token)
            self._piece_cache[token] = piece
        return piece

    def _token_bytes(self, token: int) -> bytes:
        text = self.tokenizer.convert_ids_to_tokens(token)
        if text is None:
            raise EngineError(f"unknown token id {token}")

        if token in self._special_ids:
            return text.encode("utf-8")

        match = _BYTE_FALLBACK.match(text)
        if match:
            return bytes([int(match.group(1), 16)])

        if self._sentencepiece:
            return text.replace(_SENTENCEPIECE_SPACE, " ").encode("utf-8")

        if all(ch in _BYTE_DECODER for ch in text):
            return bytes(_BYTE_DECODER[ch] for ch in text)

        return self.tokenizer.decode([token]).encode("utf-8")

    def create_context(self, params: ContextParams) -> "TransformersContext":
        if self.hf_model is None:
            raise ConfigurationError("cannot create a context for a vocabulary-only model")
        return TransformersContext(self, params)

    def close(self) -> None:
        self.hf_model = None
        self._piece_cache.clear()
        if self.device.startswith("cuda"):
            torch.cuda.empty_cache()


class TransformersContext(ContextHandle):
    """KV-cache state for one sequence on a TransformersModel."""

    def __init__(self, model: TransformersModel, params: ContextParams) -> None:
        self._model = model
        self._n_ctx = params.context_size
        self._batch_size = params.batch_size
        self._cache = None
        self._n_past = 0

        max_context = model.max_context
        if max_context is not None and params.context_size > max_context:
            logger.warning(
                "context_size %d exceeds the model's trained context %d",
                params.context_size, max_context,
            )

        torch.set_num_threads(params.thread_count)
        logger.info(
            "Created context (n_ctx=%d, batch_size=%d, threads=%d)",
            params.context_size, params.batch_size, params.thread_count,
        )

    @property
    def model(self) -> TransformersModel:
        return self._model

    @property
    def n_ctx(self) -> int:
        return self._n_ctx

    @property
    def n_past(self) -> int:
        """Number of positions currently held in the KV cache."""
        return self._n_past

    def decode_batch(self, batch: Batch) -> torch.Tensor:
        if batch.released:
            raise EngineError("cannot decode a released batch")
        n_tokens = batch.n_tokens
        if n_tokens == 0:
            raise EngineError("cannot decode an empty batch")

        start = batch.positions[0]
        if batch.positions != list(range(start, start + n_tokens)):
            raise EngineError("batch positions must be contiguous")
        if start > self._n_past:
            raise EngineError(
                f"batch starts at position {start} but the context holds {self._n_past}"
            )
        if start + n_tokens > self._n_ctx:
            raise EngineError(
                f"batch ends at position {start + n_tokens} beyond context size {self._n_ctx}"
            )
        hf_model = self._model.hf_model
        if hf_model is None:
            raise EngineError("model has been released")

        if start < self._n_past:
            self._truncate(start)

        wanted = batch.output_indices()
        rows = []
        try:
            with torch.no_grad():
                # Split into micro-batches of at most batch_size tokens
                for chunk_start in range(0, n_tokens, self._batch_size):
                    chunk_end = min(chunk_start + self._batch_size, n_tokens)
                    input_ids = torch.tensor(
                        [batch.tokens[chunk_start:chunk_end]], dtype=torch.long, device=self._model.device
                    )
                    position_ids = torch.tensor(
                        [batch.positions[chunk_start:chunk_end]], dtype=torch.long, device=self._model.device
                    )

                    outputs = hf_model(
                        input_ids=input_ids,
                        position_ids=position_ids,
                        past_key_values=self._cache,
                        use_cache=True,
                    )
                    self._cache = outputs.past_key_values
                    self._n_past = start + chunk_end

                    local = [i - chunk_start for i in wanted if chunk_start <= i < chunk_end]
                    if local:
                        rows.append(outputs.logits[0, local].float().cpu())
        except Exception as e:
            # Cache contents are unknown after a failed forward pass
            self.clear()
            raise EngineError(f"decode failed: {e}") from e

        if not rows:
            return torch.empty(0, self._model.vocab_size)
        return torch.cat(rows, dim=0)

    def _truncate(self, n_keep: int) -> None:
        if n_keep == 0 or self._cache is None:
            self.clear()
            return

        if hasattr(self._cache, "crop"):
            self._cache.crop(n_keep)
        elif isinstance(self._cache, tuple):
            self._cache = tuple(
                tuple(t[..., :n_keep, :] for t in layer) for layer in self._cache
            )
        else:
            raise EngineError(f"cannot truncate cache of type {type(self._cache).__name__}")
        self._n_past = n_keep

    def clear(self) -> None:
        self._cache = None
        self._n_past = 0

    def close(self) -> None:
        self.clear()


class TransformersBackend(EngineBackend):
    """Loads models with transformers.AutoModelForCausalLM."""

    @property
    def name(self) -> str:
        return "transformers"

    def load_model(self, path: str, params: ModelParams) -> TransformersModel:
        return TransformersModel(path, params)
