import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

LEVELS = ("ERROR", "WARN", "INFO", "DEBUG", "TRACE")
DEFAULT_LEVEL = "INFO"

_ids = itertools.count(1)


def new_entry_id() -> str:
    # Millisecond clock plus a process-wide counter: unique for the process lifetime
    return f"{int(time.time() * 1000)}-{next(_ids)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Entry:
    """One displayable record built from one or more physical lines.

    ``message`` only ever grows: continuation lines are concatenated with a
    newline via :meth:`append`, never rewritten.
    """

    timestamp: datetime
    message: str
    level: str = DEFAULT_LEVEL
    tags: List[str] = field(default_factory=list)
    source: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=new_entry_id)

    def append(self, fragment: str) -> None:
        self.message = self.message + "\n" + fragment

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
            "tags": list(self.tags),
            "source": self.source,
        }
        if self.metadata is not None:
            out["metadata"] = self.metadata
        return out


__all__ = ["Entry", "LEVELS", "DEFAULT_LEVEL", "new_entry_id", "utcnow"]
