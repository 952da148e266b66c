"""
Conversation layer.

Provides:
- ChatSession: Multi-turn chat over one model and context
- ChatTemplate: Llama3ChatTemplate and ChatMLTemplate serializers
- Message / Role: Conversation turns
- StreamFilter: Control-token removal for streamed text
"""

from llama_chat_lite.chat.session import ChatSession
from llama_chat_lite.chat.stream_filter import StreamFilter
from llama_chat_lite.chat.template import (
    ChatMLTemplate,
    ChatTemplate,
    Llama3ChatTemplate,
    Message,
    Role,
    validate_conversation,
)

__all__ = [
    "ChatMLTemplate",
    "ChatSession",
    "ChatTemplate",
    "Llama3ChatTemplate",
    "Message",
    "Role",
    "StreamFilter",
    "validate_conversation",
]
