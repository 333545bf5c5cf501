import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

from .logutil import get_logger

_log = get_logger("config")


@dataclass
class TailConfig:
    # Bytes of existing content replayed when a tailer starts (tail from near the end)
    initial_tail_bytes: int = 10000
    # Upper bound for a single read; larger deltas are streamed chunk by chunk
    chunk_size: int = 65536
    # Change watcher: stat polling period and quiet window before a change fires
    poll_interval: float = 0.1
    stability_threshold: float = 0.1
    # Guardrail: a pending partial line longer than this is flushed as a line
    max_line_bytes: int = 1_048_576
    # Reserved always-on pseudo-source for piped input
    stdin_source: str = "stdin"
    # Opaque presentation grouping sent with source announcements
    source_group: str = "#5E6AD2"
    # File every new transport connection subscribes to automatically
    auto_tail_file: Optional[str] = None
    # Events buffered per transport subscriber before it is disconnected as too slow
    queue_maxsize: int = 10000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TailConfig":
        """Build a config from ``LOGWEAVE_<FIELD>`` variables.

        Malformed values are logged and the default is kept.
        """
        env = os.environ if environ is None else environ
        cfg = cls()
        for f in fields(cls):
            raw = env.get(f"LOGWEAVE_{f.name.upper()}")
            if raw is None:
                continue
            default = getattr(cfg, f.name)
            try:
                if isinstance(default, bool):
                    value: object = raw.strip().lower() in {"1", "true", "yes", "on"}
                elif isinstance(default, int):
                    value = int(raw)
                elif isinstance(default, float):
                    value = float(raw)
                else:
                    value = raw or None
            except ValueError:
                _log.warning("invalid LOGWEAVE_%s=%r; using default %r", f.name.upper(), raw, default)
                continue
            setattr(cfg, f.name, value)
        # LOGWEAVE_FILE is the short form used by launch scripts
        if cfg.auto_tail_file is None and env.get("LOGWEAVE_FILE"):
            cfg.auto_tail_file = env["LOGWEAVE_FILE"]
        return cfg
