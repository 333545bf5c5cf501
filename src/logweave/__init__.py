"""Real-time log ingestion: parse lines, tail files, fan out to subscribers.

The FastAPI transport lives in :mod:`logweave.service` and is not imported
here, so the core works without the ``server`` extra installed.
"""

from __future__ import annotations

from importlib import metadata as _metadata

from .config import TailConfig
from .entry import LEVELS, Entry
from .errors import LogweaveError, ReadError, StartError, WatchError
from .parsers import is_new_entry, parse_line
from .registry import SubscriptionRegistry
from .tail import FileTailer

try:
    __version__ = _metadata.version("logweave")
except _metadata.PackageNotFoundError:  # pragma: no cover - source checkout without install
    __version__ = "0.3.0"

__all__ = [
    "__version__",
    "Entry",
    "LEVELS",
    "FileTailer",
    "LogweaveError",
    "ReadError",
    "StartError",
    "SubscriptionRegistry",
    "TailConfig",
    "WatchError",
    "is_new_entry",
    "parse_line",
]
