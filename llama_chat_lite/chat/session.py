"""
Conversational session over an inference engine.

ChatSession owns the conversation history and the engine resources of one
chat. Each submit() re-renders the full history through the chat template,
runs the generation loop, and streams the reply with control tokens removed.
"""

import logging
import threading
from typing import Iterable, List, Optional, Tuple, Union

from llama_chat_lite.chat.stream_filter import StreamFilter
from llama_chat_lite.chat.template import ChatTemplate, Llama3ChatTemplate, Message, Role
from llama_chat_lite.config import ContextParams, ModelParams
from llama_chat_lite.core.generation import (
    FragmentCallback,
    GenerationLoop,
    GenerationResult,
    StopPredicate,
)
from llama_chat_lite.engine.base import EngineBackend, Token
from llama_chat_lite.engine.handle import EngineResources
from llama_chat_lite.engine.transformers_backend import TransformersBackend
from llama_chat_lite.errors import ConfigurationError, EngineError
from llama_chat_lite.sampling.sampling import Sampler, SamplingParams

logger = logging.getLogger(__name__)


class ChatSession:
    """Multi-turn chat on one model and context.

    A session is used in two initialization stages, initialize_model() then
    initialize_context(), after which submit() can be called. A failed stage
    raises and leaves the session without that stage (and without any later
    one). Overlapping submit() calls on the same session are serialized.

    Example:
        >>> with ChatSession(seed=42) as chat:
        ...     chat.initialize_model("Qwen/Qwen2.5-0.5B-Instruct")
        ...     chat.initialize_context(ContextParams(context_size=2048))
        ...     chat.set_system_prompt("You are terse.")
        ...     reply = chat.submit("2+2?", SamplingParams(max_tokens=5), print)
    """

    def __init__(
        self,
        backend: Optional[EngineBackend] = None,
        template: Optional[ChatTemplate] = None,
        seed: Optional[int] = None,
    ) -> None:
        """Initialize an empty, unloaded session.

        Args:
            backend: Engine backend; defaults to TransformersBackend
            template: Chat template; defaults to Llama3ChatTemplate
            seed: Seed for the sampler's random source
        """
        self.template = template if template is not None else Llama3ChatTemplate()
        self.resources = EngineResources(backend if backend is not None else TransformersBackend())
        self.seed = seed
        self.last_result: Optional[GenerationResult] = None

        self._messages: List[Message] = []
        self._loop: Optional[GenerationLoop] = None
        self._lock = threading.Lock()

    # Initialization

    def initialize_model(self, path: str, params: Optional[ModelParams] = None) -> None:
        """Load a model, replacing any loaded model and context.

        Raises:
            ConfigurationError: If the model cannot be loaded
        """
        self._loop = None
        try:
            self.resources.load_model(path, params or ModelParams())
        except ConfigurationError:
            self.resources.close()
            raise
        except Exception as e:
            self.resources.close()
            raise ConfigurationError(f"Failed to load model from {path}: {e}") from e

    def initialize_context(self, params: Optional[ContextParams] = None) -> None:
        """Create the inference context and resolve end-of-turn tokens.

        Raises:
            ConfigurationError: If no model is loaded, the context cannot be
                created, or an end-of-turn token is not a single model token
        """
        self._loop = None
        if not self.resources.has_model:
            raise ConfigurationError("initialize_model() must succeed before initialize_context()")

        try:
            context = self.resources.create_context(params or ContextParams())
            model = context.model

            stop_tokens = []
            for marker in self.template.end_of_turn_tokens:
                ids = model.tokenize(marker, add_special=False, parse_special=True)
                if len(ids) != 1:
                    raise ConfigurationError(
                        f"{marker} does not map to a single token for this model "
                        f"(got {len(ids)}); is the {self.template.name} template right?"
                    )
                stop_tokens.append(ids[0])

            sampler = Sampler(vocab_size=model.vocab_size, seed=self.seed)
            self._loop = GenerationLoop(context, sampler, stop_tokens=stop_tokens)
        except ConfigurationError:
            self.resources.release_context()
            raise
        except EngineError as e:
            self.resources.release_context()
            raise ConfigurationError(f"Failed to initialize context: {e}") from e

    @property
    def is_ready(self) -> bool:
        """True once both initialization stages have succeeded."""
        return self._loop is not None

    # Conversation state

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Snapshot of the conversation, oldest first."""
        return tuple(self._messages)

    def set_system_prompt(self, text: str) -> None:
        """Set the system message at position 0, keeping other turns."""
        message = Message(Role.SYSTEM, text)
        if self._messages and self._messages[0].role is Role.SYSTEM:
            self._messages[0] = message
        else:
            self._messages.insert(0, message)

    def reset_conversation(self) -> None:
        """Clear all messages, including the system prompt."""
        self._messages.clear()

    # Generation

    def submit(
        self,
        user_message: str,
        params: Optional[SamplingParams] = None,
        on_fragment: Optional[FragmentCallback] = None,
        should_stop: Optional[StopPredicate] = None,
    ) -> str:
        """Send a user message and generate the assistant reply.

        The user message is appended before generation starts and stays in
        the conversation even if generation fails. The assistant reply is
        only recorded on success.

        Args:
            user_message: Text of the user turn
            params: Sampling parameters
            on_fragment: Receives reply text as it is generated, with control
                tokens removed
            should_stop: Polled between tokens; True ends generation early
                and the partial reply is recorded

        Returns:
            The assistant reply

        Raises:
            ConfigurationError: If the session is not initialized
            TemplateError: If the conversation cannot be rendered
            EngineError / SamplingError: If generation failed
            ContextOverflowError: If the context window was exhausted
        """
        loop = self._loop
        if loop is None:
            raise ConfigurationError("session is not initialized")

        with self._lock:
            self._messages.append(Message(Role.USER, user_message))
            segments = self.template.render(self._messages)

            stream_filter = StreamFilter(self.template.control_tokens)
            reply: List[str] = []

            def deliver(text: str) -> None:
                if text:
                    reply.append(text)
                    if on_fragment is not None:
                        on_fragment(text)

            result = loop.run(
                segments,
                params,
                on_fragment=lambda fragment: deliver(stream_filter.feed(fragment)),
                should_stop=should_stop,
            )
            self.last_result = result

            if not result.ok:
                raise result.error

            deliver(stream_filter.flush())
            text = "".join(reply)
            self._messages.append(Message(Role.ASSISTANT, text))

            logger.debug(
                "Turn %d finished (%s, %d tokens)",
                len(self._messages) // 2, result.finish_reason.value, result.n_generated,
            )
            return text

    def encode(self, text: str, add_special: bool = False) -> List[Token]:
        """Tokenize text with the loaded model.

        Control-token markup in text is not parsed. The texts of the returned
        tokens concatenate back to text unless add_special prepends the
        beginning-of-sequence token.

        Raises:
            ConfigurationError: If no model is loaded
        """
        model = self.resources.model
        ids = model.tokenize(text, add_special=add_special, parse_special=False)
        return [
            Token(token_id, model.detokenize_one(token_id).decode("utf-8", errors="replace"))
            for token_id in ids
        ]

    def decode(self, tokens: Iterable[Union[Token, int]]) -> str:
        """Convert tokens back to text.

        Token bytes are joined before UTF-8 decoding, so characters split
        across tokens come back whole.

        Raises:
            ConfigurationError: If no model is loaded
        """
        model = self.resources.model
        data = b"".join(model.detokenize_one(int(token)) for token in tokens)
        return data.decode("utf-8", errors="replace")

    def run_query(
        self,
        prompt: str,
        params: Optional[SamplingParams] = None,
        on_fragment: Optional[FragmentCallback] = None,
        should_stop: Optional[StopPredicate] = None,
        add_special: bool = True,
    ) -> str:
        """Generate a completion for a raw, already formatted prompt.

        The conversation history and chat template are not used and nothing
        is recorded. Control-token markup in prompt is parsed.

        Args:
            prompt: Prompt text
            params: Sampling parameters
            on_fragment: Receives generated text as it is produced
            should_stop: Polled between tokens; True ends generation early
            add_special: Prepend the beginning-of-sequence token

        Returns:
            The generated text

        Raises:
            ConfigurationError: If the session is not initialized
            EngineError / SamplingError: If generation failed
            ContextOverflowError: If the context window was exhausted
        """
        loop = self._loop
        if loop is None:
            raise ConfigurationError("session is not initialized")

        with self._lock:
            result = loop.run(prompt, params, on_fragment, should_stop, add_special=add_special)
            self.last_result = result
            if not result.ok:
                raise result.error
            return result.text

    # Lifecycle

    def close(self) -> None:
        """Release context and model."""
        self._loop = None
        self.resources.close()

    def __enter__(self) -> "ChatSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __copy__(self):
        raise TypeError("ChatSession cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("ChatSession cannot be copied")
