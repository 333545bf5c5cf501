"""Project-wide logging utilities.

Provides a single root logger configured lazily; applications embedding
logweave can override handlers or levels as needed. We default to WARNING to
stay quiet unless something noteworthy happens (read failures, watcher errors,
parser fallbacks). Modules log through child loggers of ``logweave``.
"""
from __future__ import annotations

import logging
from typing import Optional

_LOGGER: Optional[logging.Logger] = None


def get_logger(name: Optional[str] = None) -> logging.Logger:
    global _LOGGER
    if _LOGGER is None:
        logger = logging.getLogger("logweave")
        # Only add a handler if the application hasn't configured logging.
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("[%(name)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(logging.WARNING)
        _LOGGER = logger
    if name:
        return _LOGGER.getChild(name)
    return _LOGGER


__all__ = ["get_logger"]
