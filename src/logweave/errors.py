"""Error taxonomy for the ingestion pipeline.

Every error carries the id of the source it belongs to so that failures stay
local to that source. Parsing never raises; see ``parsers.parse_line``.
"""
from __future__ import annotations

from typing import Optional


class LogweaveError(Exception):
    def __init__(self, message: str, source_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.source_id = source_id


class StartError(LogweaveError):
    """Source could not be opened when a subscriber asked for it. Not retried."""


class ReadError(LogweaveError):
    """Transient I/O failure while tailing; tailing continues."""


class WatchError(LogweaveError):
    """Change watcher failure; the tailer keeps running."""


__all__ = ["LogweaveError", "StartError", "ReadError", "WatchError"]
