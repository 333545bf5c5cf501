"""Outbound event sinks.

The registry hands every event to ``Sink.emit`` synchronously, addressed to one
subscriber. Transports that need to await their writes (WebSocket) buffer per
subscriber through :class:`QueueSink`; :class:`JsonlSink` records events as JSON
lines; :class:`MultiSink` fans out to several sinks.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Protocol, Set

from ..logutil import get_logger

_log = get_logger("sinks")

Event = Dict[str, Any]


class Sink(Protocol):  # pragma: no cover - simple protocol
    def emit(self, subscriber_id: str, event: Event) -> None: ...  # noqa: D401,E701 - protocol stub
    def close(self) -> None: ...


class QueueSink:
    """Per-subscriber ``asyncio.Queue`` buffers drained by transport tasks.

    Queues are bounded by ``maxsize``. A subscriber whose queue overflows is
    cut off: the ``None`` end-of-stream sentinel is queued behind its backlog
    (displacing the oldest event when full) and its id is recorded in
    ``overflowed`` so the transport can close the connection.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self.maxsize = maxsize
        self._queues: Dict[str, "asyncio.Queue[Optional[Event]]"] = {}
        self.overflowed: Set[str] = set()

    def attach(self, subscriber_id: str) -> "asyncio.Queue[Optional[Event]]":
        queue = self._queues.get(subscriber_id)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.maxsize)
            self._queues[subscriber_id] = queue
        return queue

    def detach(self, subscriber_id: str) -> None:
        queue = self._queues.pop(subscriber_id, None)
        if queue is not None:
            _end(queue)

    def emit(self, subscriber_id: str, event: Event) -> None:
        queue = self._queues.get(subscriber_id)
        if queue is None:
            _log.debug("no queue for subscriber %s; dropping %s", subscriber_id, event.get("type"))
            return
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            _log.warning("subscriber %s fell %d events behind; disconnecting", subscriber_id, queue.qsize())
            self.overflowed.add(subscriber_id)
            self.detach(subscriber_id)

    def close(self) -> None:
        for subscriber_id in list(self._queues):
            self.detach(subscriber_id)


def _end(queue: "asyncio.Queue[Optional[Event]]") -> None:
    """Queue the end-of-stream sentinel, dropping backlog if there is no room."""
    while queue.full():
        queue.get_nowait()
    queue.put_nowait(None)


class JsonlSink:
    def __init__(self, path: str) -> None:
        self.path = path
        self._fh = open(path, "a", encoding="utf-8")

    def emit(self, subscriber_id: str, event: Event) -> None:
        record = {"subscriber": subscriber_id, **event}
        self._fh.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        self._fh.flush()

    def close(self) -> None:
        self._fh.close()


class MultiSink:
    def __init__(self, sinks: List[Sink]):
        self._sinks = sinks

    def emit(self, subscriber_id: str, event: Event) -> None:
        for s in self._sinks:
            try:
                s.emit(subscriber_id, event)
            except Exception:  # noqa: BLE001 - one failing sink must not starve the rest
                _log.exception("sink %s failed to emit %s", type(s).__name__, event.get("type"))

    def close(self) -> None:  # pragma: no cover
        for s in self._sinks:
            try:
                s.close()
            except Exception:  # noqa: BLE001
                _log.exception("sink %s failed to close", type(s).__name__)


__all__ = ["Event", "Sink", "QueueSink", "JsonlSink", "MultiSink"]
