"""
Utility functions and helpers.

Provides:
- configure_logging: Stream handler setup for the package logger
"""

from llama_chat_lite.utils.logging import configure_logging

__all__ = ["configure_logging"]
