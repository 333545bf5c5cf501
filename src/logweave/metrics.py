"""Metrics helper for SubscriptionRegistry.

Provides a lightweight, dependency-free snapshot of internal counters suitable
for exposure via HTTP or logging. Avoids mutating the registry.
"""
from __future__ import annotations

from typing import Any, Dict

from .registry import SubscriptionRegistry


def registry_metrics(registry: SubscriptionRegistry) -> Dict[str, Any]:
    return {
        "sources": len(registry.sources),
        "subscribers": registry.subscriber_count,
        "tailers": registry.tailer_count,
        "lines": registry.lines,
        "entries": registry.entries,
        "appends": registry.appends,
        "batches": registry.batches,
        "read_errors": registry.read_errors,
        "watch_errors": registry.watch_errors,
        "start_errors": registry.start_errors,
        "piped_input": registry.has_piped_input,
        "config": {
            "initial_tail_bytes": registry.cfg.initial_tail_bytes,
            "chunk_size": registry.cfg.chunk_size,
            "poll_interval": registry.cfg.poll_interval,
            "stability_threshold": registry.cfg.stability_threshold,
            "max_line_bytes": registry.cfg.max_line_bytes,
            "queue_maxsize": registry.cfg.queue_maxsize,
        },
    }


__all__ = ["registry_metrics"]
