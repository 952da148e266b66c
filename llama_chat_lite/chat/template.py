"""
Chat templates.

A template serializes a conversation into prompt segments: markup segments
carry control tokens, content segments carry message text. Keeping them
apart means message text that happens to contain control-token markup is
tokenized as plain text and never becomes structure.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

from llama_chat_lite.core.generation import PromptSegment
from llama_chat_lite.errors import TemplateError


class Role(Enum):
    """Author of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """One conversation turn."""

    role: Role
    content: str

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            try:
                object.__setattr__(self, "role", Role(self.role))
            except ValueError as e:
                raise TemplateError(f"unknown role {self.role!r}") from e
        if not isinstance(self.content, str):
            raise TemplateError(f"message content must be str, got {type(self.content).__name__}")


def validate_conversation(messages: Sequence[Message]) -> None:
    """Check that a conversation can be rendered for a new assistant turn.

    Raises:
        TemplateError: If the conversation is empty, has a system message
            anywhere but position 0, has no user turn, or does not end with
            a user turn.
    """
    if not messages:
        raise TemplateError("conversation is empty")
    for i, message in enumerate(messages):
        if message.role is Role.SYSTEM and i != 0:
            raise TemplateError(f"system message at position {i}; only position 0 is allowed")
    if messages[-1].role is not Role.USER:
        raise TemplateError(
            f"conversation must end with a user turn, got {messages[-1].role.value}"
        )


class ChatTemplate(ABC):
    """Serializes conversations into role-tagged prompt segments."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def control_tokens(self) -> Tuple[str, ...]:
        """Every control-token string the template (or model) may emit."""
        pass

    @property
    @abstractmethod
    def end_of_turn_tokens(self) -> Tuple[str, ...]:
        """Control tokens that end an assistant turn."""
        pass

    @abstractmethod
    def render(self, messages: Sequence[Message]) -> List[PromptSegment]:
        """Render a conversation, ending with the assistant-turn opener.

        Raises:
            TemplateError: If the conversation is malformed
        """
        pass

    def render_text(self, messages: Sequence[Message]) -> str:
        """Render a conversation as a single string."""
        return "".join(segment.text for segment in self.render(messages))


class Llama3ChatTemplate(ChatTemplate):
    """Llama 3 header template.

    <|begin_of_text|> then, per message,
    <|start_header_id|>{role}<|end_header_id|>{content}<|eot_id|>
    and finally <|start_header_id|>assistant<|end_header_id|>.

    Attributes:
        header_separator: Text between <|end_header_id|> and the content.
    """

    BEGIN_OF_TEXT = "<|begin_of_text|>"
    END_OF_TEXT = "<|end_of_text|>"
    START_HEADER = "<|start_header_id|>"
    END_HEADER = "<|end_header_id|>"
    END_OF_TURN = "<|eot_id|>"

    def __init__(self, header_separator: str = "") -> None:
        self.header_separator = header_separator

    @property
    def name(self) -> str:
        return "llama3"

    @property
    def control_tokens(self) -> Tuple[str, ...]:
        return (
            self.BEGIN_OF_TEXT,
            self.END_OF_TEXT,
            self.START_HEADER,
            self.END_HEADER,
            self.END_OF_TURN,
        )

    @property
    def end_of_turn_tokens(self) -> Tuple[str, ...]:
        return (self.END_OF_TURN,)

    def _header(self, role: Role) -> str:
        return f"{self.START_HEADER}{role.value}{self.END_HEADER}{self.header_separator}"

    def render(self, messages: Sequence[Message]) -> List[PromptSegment]:
        validate_conversation(messages)

        segments = [PromptSegment(self.BEGIN_OF_TEXT, markup=True)]
        for message in messages:
            segments.append(PromptSegment(self._header(message.role), markup=True))
            segments.append(PromptSegment(message.content))
            segments.append(PromptSegment(self.END_OF_TURN, markup=True))
        segments.append(PromptSegment(self._header(Role.ASSISTANT), markup=True))
        return segments


class ChatMLTemplate(ChatTemplate):
    """ChatML template used by Qwen instruct models.

    <|im_start|>{role}\\n{content}<|im_end|>\\n per message, then
    <|im_start|>assistant\\n.
    """

    IM_START = "<|im_start|>"
    IM_END = "<|im_end|>"
    END_OF_TEXT = "<|endoftext|>"

    @property
    def name(self) -> str:
        return "chatml"

    @property
    def control_tokens(self) -> Tuple[str, ...]:
        return (self.IM_START, self.IM_END, self.END_OF_TEXT)

    @property
    def end_of_turn_tokens(self) -> Tuple[str, ...]:
        return (self.IM_END,)

    def render(self, messages: Sequence[Message]) -> List[PromptSegment]:
        validate_conversation(messages)

        segments = []
        for message in messages:
            segments.append(PromptSegment(f"{self.IM_START}{message.role.value}\n", markup=True))
            segments.append(PromptSegment(message.content))
            segments.append(PromptSegment(f"{self.IM_END}\n", markup=True))
        segments.append(PromptSegment(f"{self.IM_START}{Role.ASSISTANT.value}\n", markup=True))
        return segments
