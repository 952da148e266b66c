"""Logging setup for applications embedding llama_chat_lite."""

import logging
from typing import Optional, Union

from llama_chat_lite.config import ChatSettings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """Attach a stream handler to the package logger.

    Args:
        level: Logging level. Defaults to ChatSettings.from_env().log_level.

    Returns:
        The configured "llama_chat_lite" logger.
    """
    if level is None:
        level = ChatSettings.from_env().log_level

    logger = logging.getLogger("llama_chat_lite")
    logger.setLevel(level)

    # Avoid stacking handlers on repeated calls
    if not any(getattr(h, "_llama_chat_lite", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._llama_chat_lite = True
        logger.addHandler(handler)

    return logger
