"""Subscription registry: many subscribers, one shared tailer per source.

All state here is owned by the event loop thread. Subscriber/source pairs live
in two reverse indices that are only changed through ``_link``/``_unlink``.
Every outbound event goes through ``Sink.emit`` synchronously, which keeps a
source's lines in file order for each of its subscribers.
"""
from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from .config import TailConfig
from .entry import Entry, utcnow
from .errors import LogweaveError, ReadError, StartError, WatchError
from .logutil import get_logger
from .parsers import parse_line
from .sinks import Event, Sink
from .tail import ErrorEvent, FileTailer, InitialReadDone, LineEvent, TailEvent, classify, split_lines

_log = get_logger("registry")

FILE = "file"
STDIN = "stdin"
UPLOAD = "upload"


@dataclass
class Source:
    id: str
    name: str
    path: str
    kind: str = FILE
    group: str = ""
    tailer: Optional[FileTailer] = None
    active: bool = True
    initial_done: bool = False
    entry_count: int = 0
    last_activity: Optional[datetime] = None
    # Subscribers waiting for the initial batch, and the lines buffered for it
    pending: List[str] = field(default_factory=list)
    initial_lines: List[LineEvent] = field(default_factory=list)
    # Resolves to None once started, or to the StartError that aborted the start
    ready: Optional["asyncio.Future[Optional[StartError]]"] = None

    @property
    def cursor(self) -> int:
        return self.tailer.position if self.tailer is not None else 0

    @property
    def state(self) -> str:
        if self.tailer is not None:
            return self.tailer.state
        return "active" if self.active else "inactive"

    def info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "kind": self.kind,
            "group": self.group,
            "active": self.active,
            "entry_count": self.entry_count,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }


def classify_lines(lines: Iterable[str]) -> List[LineEvent]:
    return [classify(line) for line in lines if line.strip()]


def consolidate(lines: Iterable[LineEvent], source_id: Optional[str] = None) -> List[Entry]:
    """Fold continuation lines into the nearest preceding entry.

    Continuations seen before any entry have nothing to attach to and are
    dropped.
    """
    entries: List[Entry] = []
    for line in lines:
        if not line.is_append:
            entry = parse_line(line.content, source_id)
            if entry is not None:
                entries.append(entry)
        elif entries:
            entries[-1].append(line.content)
    return entries


class SubscriptionRegistry:
    def __init__(self, sink: Sink, config: Optional[TailConfig] = None) -> None:
        self.sink = sink
        self.cfg = config or TailConfig()
        self._sources: Dict[str, Source] = {}
        self._by_subscriber: Dict[str, Set[str]] = {}
        self._by_source: Dict[str, Set[str]] = {}
        # Piped input is always present; it only toggles between active and inactive
        self._stdin = Source(
            id=self.cfg.stdin_source,
            name=self.cfg.stdin_source,
            path=self.cfg.stdin_source,
            kind=STDIN,
            group=self.cfg.source_group,
            active=False,
            initial_done=True,
        )
        self._sources[self._stdin.id] = self._stdin
        self._stdin_carry = b""
        self.has_piped_input = False
        # Counters (see metrics.registry_metrics)
        self.lines = 0
        self.entries = 0
        self.appends = 0
        self.batches = 0
        self.read_errors = 0
        self.watch_errors = 0
        self.start_errors = 0

    # --- index maintenance ------------------------------------------------

    def _link(self, subscriber_id: str, source_id: str) -> bool:
        sources = self._by_subscriber.setdefault(subscriber_id, set())
        if source_id in sources:
            return False
        sources.add(source_id)
        self._by_source.setdefault(source_id, set()).add(subscriber_id)
        return True

    def _unlink(self, subscriber_id: str, source_id: str) -> Optional[int]:
        """Remove one pair; returns the source's remaining subscriber count."""
        sources = self._by_subscriber.get(subscriber_id)
        if not sources or source_id not in sources:
            return None
        sources.discard(source_id)
        if not sources:
            del self._by_subscriber[subscriber_id]
        subscribers = self._by_source.get(source_id, set())
        subscribers.discard(subscriber_id)
        if not subscribers:
            self._by_source.pop(source_id, None)
        return len(subscribers)

    # --- queries -----------------------------------------------------------

    @property
    def sources(self) -> List[Source]:
        return list(self._sources.values())

    def source(self, source_id: str) -> Optional[Source]:
        return self._sources.get(source_id)

    def tailer_for(self, source_id: str) -> Optional[FileTailer]:
        source = self._sources.get(source_id)
        return source.tailer if source is not None else None

    def subscribers_of(self, source_id: str) -> Set[str]:
        return set(self._by_source.get(source_id, ()))

    def sources_of(self, subscriber_id: str) -> Set[str]:
        return set(self._by_subscriber.get(subscriber_id, ()))

    @property
    def subscriber_count(self) -> int:
        return len(self._by_subscriber)

    @property
    def tailer_count(self) -> int:
        return sum(1 for s in self._sources.values() if s.tailer is not None)

    # --- outbound ----------------------------------------------------------

    def _emit(self, subscriber_id: str, event: Event) -> None:
        try:
            self.sink.emit(subscriber_id, event)
        except Exception:  # noqa: BLE001 - a broken consumer must not take the registry down
            _log.exception("sink failed delivering %s to %s", event.get("type"), subscriber_id)

    def _announce(self, subscriber_id: str, source: Source) -> None:
        self._emit(subscriber_id, {"type": "source:added", "source": source.info()})

    def _send_batch(self, subscriber_id: str, source: Source, entries: List[Entry]) -> None:
        self.batches += 1
        self._emit(
            subscriber_id,
            {"type": "log:batch", "source": source.id, "entries": [e.to_dict() for e in entries]},
        )

    def _dispatch(self, source: Source, line: LineEvent) -> None:
        """Deliver one live line to every current subscriber of ``source``."""
        subscribers = self._by_source.get(source.id)
        if not subscribers:
            return
        if line.is_append:
            self.appends += 1
            event: Event = {"type": "log:append", "source": source.id, "content": line.content}
        else:
            entry = parse_line(line.content, source.id)
            if entry is None:
                return
            self.entries += 1
            source.entry_count += 1
            event = {"type": "log:entry", "source": source.id, "entry": entry.to_dict()}
        for subscriber_id in sorted(subscribers):
            self._emit(subscriber_id, event)

    # --- tailer events -----------------------------------------------------

    def _on_tail_event(self, source: Source, event: TailEvent) -> None:
        if isinstance(event, LineEvent):
            self.lines += 1
            source.last_activity = utcnow()
            if not source.initial_done:
                source.initial_lines.append(event)
            else:
                self._dispatch(source, event)
        elif isinstance(event, InitialReadDone):
            self._finish_initial_read(source)
        elif isinstance(event, ErrorEvent):
            self._on_tail_error(source, event.error)

    def _finish_initial_read(self, source: Source) -> None:
        entries = consolidate(source.initial_lines, source.id)
        source.initial_lines = []
        source.initial_done = True
        self.entries += len(entries)
        source.entry_count += len(entries)
        waiting, source.pending = source.pending, []
        _log.info("initial read of %s done: %d entries for %d subscriber(s)", source.id, len(entries), len(waiting))
        for subscriber_id in waiting:
            self._announce(subscriber_id, source)
            self._send_batch(subscriber_id, source, entries)

    def _on_tail_error(self, source: Source, error: LogweaveError) -> None:
        if isinstance(error, ReadError):
            self.read_errors += 1
        elif isinstance(error, WatchError):
            self.watch_errors += 1
        event: Event = {
            "type": "source:error",
            "source": source.id,
            "error": type(error).__name__,
            "message": str(error),
        }
        for subscriber_id in sorted(self._by_source.get(source.id, ())):
            self._emit(subscriber_id, event)

    # --- subscribe / unsubscribe --------------------------------------------

    async def subscribe(self, subscriber_id: str, source_id: str) -> None:
        """Attach a subscriber to a source, starting its tailer if needed.

        The subscriber receives ``source:added`` and exactly one ``log:batch``,
        then live lines. Raises :class:`StartError` if the file cannot be
        tailed; nobody else is affected.
        """
        if source_id == self._stdin.id:
            self._subscribe_stdin(subscriber_id)
            return
        source = self._sources.get(source_id)
        if source is not None and source.kind == UPLOAD:
            raise StartError(f"{source_id} is an uploaded source and cannot be tailed", source_id)
        if not self._link(subscriber_id, source_id):
            _log.debug("%s already subscribed to %s", subscriber_id, source_id)
            return

        if source is None:
            await self._start_source(subscriber_id, source_id)
            return

        if not source.initial_done:
            # Tailer still on its initial read: share the batch it produces
            source.pending.append(subscriber_id)
            error = await asyncio.shield(source.ready) if source.ready is not None else None
            if error is not None:
                # already counted once in _abort_start
                raise StartError(str(error), source_id) from error
            return

        self._announce(subscriber_id, source)
        lines: List[LineEvent] = []
        if source.tailer is not None:
            try:
                lines = source.tailer.snapshot()
            except OSError as exc:
                _log.warning("could not re-read %s for late subscriber %s: %s", source_id, subscriber_id, exc)
        entries = consolidate(lines, source.id)
        self.entries += len(entries)
        self._send_batch(subscriber_id, source, entries)

    async def _start_source(self, subscriber_id: str, source_id: str) -> None:
        tailer = FileTailer(source_id, self.cfg, source_id=source_id)
        source = Source(
            id=source_id,
            name=os.path.basename(source_id) or source_id,
            path=source_id,
            group=self.cfg.source_group,
            tailer=tailer,
            pending=[subscriber_id],
            ready=asyncio.get_running_loop().create_future(),
        )
        self._sources[source_id] = source
        tailer.on(partial(self._on_tail_event, source))
        _log.info("starting tailer for %s", source_id)
        try:
            await tailer.start()
        except StartError as exc:
            self._abort_start(source, exc)
            raise
        except asyncio.CancelledError:
            self._abort_start(source, StartError(f"start of {source_id} was cancelled", source_id))
            raise
        except Exception as exc:  # noqa: BLE001 - any start failure stays local to this source
            error = StartError(f"failed to start tailing {source_id}: {exc}", source_id)
            self._abort_start(source, error)
            raise error from exc
        if source.ready is not None and not source.ready.done():
            source.ready.set_result(None)

    def _abort_start(self, source: Source, error: StartError) -> None:
        self.start_errors += 1
        _log.warning("%s", error)
        if source.ready is not None and not source.ready.done():
            source.ready.set_result(error)
        if self._sources.get(source.id) is not source:
            return
        for subscriber_id in self.subscribers_of(source.id):
            self._unlink(subscriber_id, source.id)
        if source.tailer is not None:
            source.tailer.stop()
        del self._sources[source.id]

    def _subscribe_stdin(self, subscriber_id: str) -> None:
        if not self._link(subscriber_id, self._stdin.id):
            return
        self._stdin.active = True
        self._announce(subscriber_id, self._stdin)
        self._send_batch(subscriber_id, self._stdin, [])

    def unsubscribe(self, subscriber_id: str, source_id: str, notify: bool = True) -> bool:
        remaining = self._unlink(subscriber_id, source_id)
        if remaining is None:
            return False
        source = self._sources.get(source_id)
        if source is not None and subscriber_id in source.pending:
            source.pending.remove(subscriber_id)
        if notify:
            self._emit(subscriber_id, {"type": "source:removed", "source": source_id})
        if remaining == 0 and source is not None:
            self._release(source)
        return True

    def unsubscribe_all(self, subscriber_id: str, notify: bool = False) -> int:
        """Drop every subscription of a (disconnected) subscriber."""
        source_ids = sorted(self._by_subscriber.get(subscriber_id, ()))
        for source_id in source_ids:
            self.unsubscribe(subscriber_id, source_id, notify=notify)
        return len(source_ids)

    def _release(self, source: Source) -> None:
        if source.kind == STDIN:
            _log.info("no subscribers left for %s; marking inactive", source.id)
            source.active = False
            return
        if source.tailer is not None:
            source.tailer.stop()
        if self._sources.get(source.id) is source:
            del self._sources[source.id]
        _log.info("released %s", source.id)

    # --- raw content --------------------------------------------------------

    def submit(self, subscriber_id: str, name: str, content: Union[str, Iterable[str]]) -> List[Entry]:
        """Register an uploaded blob as source ``upload:<name>`` and send its batch."""
        source_id = f"upload:{name}"
        lines = content.splitlines() if isinstance(content, str) else list(content)
        source = self._sources.get(source_id)
        if source is None:
            source = Source(
                id=source_id,
                name=name,
                path=name,
                kind=UPLOAD,
                group=self.cfg.source_group,
                initial_done=True,
            )
            self._sources[source_id] = source
        self._link(subscriber_id, source_id)
        events = classify_lines(lines)
        self.lines += len(events)
        entries = consolidate(events, source_id)
        self.entries += len(entries)
        source.entry_count += len(entries)
        source.last_activity = utcnow()
        self._announce(subscriber_id, source)
        self._send_batch(subscriber_id, source, entries)
        return entries

    def feed_stdin(self, data: bytes) -> None:
        """Push piped bytes; complete lines go live to ``stdin`` subscribers."""
        if not data:
            return
        self.has_piped_input = True
        lines, self._stdin_carry = split_lines(self._stdin_carry, data, self.cfg.max_line_bytes)
        for line in lines:
            self._publish_stdin(line)

    def close_stdin(self) -> None:
        """End of piped input: flush a trailing unterminated line."""
        rest, self._stdin_carry = self._stdin_carry, b""
        if rest:
            self._publish_stdin(rest.decode("utf-8", errors="replace").rstrip("\r"))

    def _publish_stdin(self, line: str) -> None:
        if not line.strip():
            return
        self.lines += 1
        self._stdin.last_activity = utcnow()
        self._dispatch(self._stdin, classify(line))

    def close(self) -> None:
        """Stop every tailer and forget all subscriptions."""
        for source in list(self._sources.values()):
            if source.tailer is not None:
                source.tailer.stop()
        self._sources = {self._stdin.id: self._stdin}
        self._by_subscriber.clear()
        self._by_source.clear()
        self._stdin.active = False


__all__ = ["SubscriptionRegistry", "Source", "consolidate", "classify_lines", "FILE", "STDIN", "UPLOAD"]
