"""
Model, context and environment configuration.

ModelParams and ContextParams mirror the two initialization stages of a chat
session: loading model weights and creating an inference context on top of
them. Both validate themselves on construction. ChatSettings collects
environment overrides (optionally from a .env file).
"""

import os
from dataclasses import dataclass
from typing import Optional

import dotenv

from llama_chat_lite.errors import ConfigurationError


@dataclass
class ModelParams:
    """Parameters for loading a model.

    Attributes:
        gpu_layers: Number of layers to offload to the GPU. Any positive value
            places the model on CUDA when it is available.
        vocabulary_only: Load only the tokenizer, no weights. A context cannot
            be created from a vocabulary-only model.
        use_memory_mapping: Memory-map checkpoint files while loading.
        lock_in_ram: Pin model memory. Backends that cannot honor it log a
            warning and continue.
        device: Explicit torch device, overrides gpu_layers placement.
    """

    gpu_layers: int = 0
    vocabulary_only: bool = False
    use_memory_mapping: bool = True
    lock_in_ram: bool = False
    device: Optional[str] = None

    def __post_init__(self) -> None:
        if self.gpu_layers < 0:
            raise ConfigurationError(
                f"gpu_layers must be non-negative, got {self.gpu_layers}"
            )


@dataclass
class ContextParams:
    """Parameters for creating an inference context.

    Attributes:
        context_size: Number of positions the context can hold.
        thread_count: CPU threads used for the forward pass.
        batch_size: Maximum tokens submitted to the model in one forward call.
            Larger batches are split internally.
    """

    context_size: int = 4096
    thread_count: int = 6
    batch_size: int = 512

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        """Validate context parameters.

        Raises:
            ConfigurationError: If any value is not positive.
        """
        if self.context_size <= 0:
            raise ConfigurationError(
                f"context_size must be positive, got {self.context_size}"
            )
        if self.thread_count <= 0:
            raise ConfigurationError(
                f"thread_count must be positive, got {self.thread_count}"
            )
        if self.batch_size <= 0:
            raise ConfigurationError(
                f"batch_size must be positive, got {self.batch_size}"
            )


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


@dataclass
class ChatSettings:
    """Session settings with environment variable overrides."""

    model_path: Optional[str] = None
    context_size: int = 4096
    thread_count: int = 6
    batch_size: int = 512
    gpu_layers: int = 0
    seed: Optional[int] = None
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, load_dotenv: bool = True) -> "ChatSettings":
        """Build settings from LLAMA_CHAT_* environment variables.

        Args:
            load_dotenv: Read a .env file (found from the working directory
                upward) into the environment first. Existing variables win.

        Returns:
            ChatSettings with environment values applied over the defaults.
        """
        if load_dotenv:
            # Search from the working directory, not from this installed module
            dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))

        return cls(
            model_path=os.getenv("LLAMA_CHAT_MODEL_PATH", cls.model_path),
            context_size=_env_int("LLAMA_CHAT_CONTEXT_SIZE", cls.context_size),
            thread_count=_env_int("LLAMA_CHAT_THREADS", cls.thread_count),
            batch_size=_env_int("LLAMA_CHAT_BATCH_SIZE", cls.batch_size),
            gpu_layers=_env_int("LLAMA_CHAT_GPU_LAYERS", cls.gpu_layers),
            seed=_env_int("LLAMA_CHAT_SEED", cls.seed),
            log_level=os.getenv("LLAMA_CHAT_LOG_LEVEL", cls.log_level).upper(),
        )

    def model_params(self) -> ModelParams:
        return ModelParams(gpu_layers=self.gpu_layers)

    def context_params(self) -> ContextParams:
        return ContextParams(
            context_size=self.context_size,
            thread_count=self.thread_count,
            batch_size=self.batch_size,
        )
