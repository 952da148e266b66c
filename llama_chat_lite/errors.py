"""
Exception hierarchy for llama_chat_lite.

Every error raised by the package derives from LlamaChatError. Each subclass
also derives from the closest builtin exception so callers that already catch
ValueError / RuntimeError / OverflowError keep working.
"""


class LlamaChatError(Exception):
    """Base class for all llama_chat_lite errors."""


class ConfigurationError(LlamaChatError, ValueError):
    """Invalid parameters, paths, or a vocabulary size mismatch."""


class EngineError(LlamaChatError, RuntimeError):
    """Fatal failure inside the inference engine (decode or tokenize).

    Engine errors are never retried; they end the current generation call.
    """


class SamplingError(LlamaChatError, RuntimeError):
    """No candidate token survived filtering."""


class ContextOverflowError(LlamaChatError, OverflowError):
    """The context window was exhausted before generation finished.

    Attributes:
        partial_text: Text generated (and already streamed) before the overflow.
    """

    def __init__(self, message: str, partial_text: str = "") -> None:
        super().__init__(message)
        self.partial_text = partial_text


class TemplateError(LlamaChatError, ValueError):
    """The conversation cannot be rendered by the chat template."""
