"""Byte-cursor file tailing with truncation and rotation handling."""
import asyncio
import os
import stat
from dataclasses import dataclass
from typing import BinaryIO, Callable, List, Optional, Tuple, Union

from .config import TailConfig
from .errors import LogweaveError, ReadError, StartError, WatchError
from .logutil import get_logger
from .parsers import is_new_entry
from .watch import PollWatcher

_log = get_logger("tail")

IDLE = "idle"
STARTING = "starting"
RUNNING = "running"
STOPPED = "stopped"


@dataclass(frozen=True)
class LineEvent:
    content: str
    is_append: bool


@dataclass(frozen=True)
class InitialReadDone:
    lines: int


@dataclass(frozen=True)
class ErrorEvent:
    error: LogweaveError


TailEvent = Union[LineEvent, InitialReadDone, ErrorEvent]
Listener = Callable[[TailEvent], None]


def split_lines(carry: bytes, data: bytes, max_line_bytes: Optional[int] = None) -> Tuple[List[str], bytes]:
    """Split ``carry + data`` on newlines.

    Returns the complete lines (decoded, ``\\r`` stripped) and the trailing
    partial line, which the caller carries into the next chunk. A partial line
    longer than ``max_line_bytes`` is flushed as a line of its own.
    """
    parts = (carry + data).split(b"\n")
    rest = parts.pop()
    lines = [p.decode("utf-8", errors="replace").rstrip("\r") for p in parts]
    if max_line_bytes and len(rest) > max_line_bytes:
        lines.append(rest.decode("utf-8", errors="replace"))
        rest = b""
    return lines, rest


def classify(line: str) -> LineEvent:
    return LineEvent(line, not is_new_entry(line))


class FileTailer:
    """Follow one file from near its end and stream classified lines.

    Listeners receive, in file byte order: one :class:`LineEvent` per complete
    non-blank line, a single :class:`InitialReadDone` after the startup read,
    then live lines as the file grows. Read and watch failures arrive as
    :class:`ErrorEvent` and do not stop the tailer.

    Lifecycle: idle -> starting -> running -> stopped. ``stop()`` is
    synchronous; nothing is delivered after it returns.
    """

    def __init__(self, path: str, config: Optional[TailConfig] = None, source_id: Optional[str] = None) -> None:
        self.path = os.path.abspath(path)
        self.source_id = source_id or path
        self.cfg = config or TailConfig()
        self.state = IDLE
        self.position = 0
        self.lines_emitted = 0
        self._carry = b""
        self._inode: Optional[int] = None
        self._listeners: List[Listener] = []
        self._watcher: Optional[PollWatcher] = None
        self._handle: Optional[BinaryIO] = None
        self._running = False
        # Bumped by start() and stop(); a read belongs to the generation it began in
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._running

    def on(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def off(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: TailEvent) -> None:
        if not self._running:
            return
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001 - one listener must not break the others
                _log.exception("listener failed for %s", self.path)

    def _report(self, error: LogweaveError) -> None:
        _log.warning("%s", error)
        self._emit(ErrorEvent(error))

    def _on_watch_error(self, error: WatchError) -> None:
        self._report(error)

    async def start(self) -> None:
        if self.state in (STARTING, RUNNING):
            _log.debug("already tailing %s", self.path)
            return
        self.state = STARTING
        self._generation += 1
        generation = self._generation
        try:
            st = os.stat(self.path)
        except (OSError, ValueError) as exc:
            # ValueError: the path itself is unusable (embedded NUL byte)
            self.state = IDLE
            raise StartError(f"failed to start tailing {self.path}: {exc}", self.source_id) from exc
        if not stat.S_ISREG(st.st_mode):
            self.state = IDLE
            raise StartError(f"failed to start tailing {self.path}: not a regular file", self.source_id)

        self.position = max(0, st.st_size - self.cfg.initial_tail_bytes)
        self._carry = b""
        self._inode = getattr(st, "st_ino", None)
        self._running = True
        _log.info("tailing %s from offset %d (size %d)", self.path, self.position, st.st_size)
        try:
            lines = await self._read_to(st.st_size, generation)
        except (OSError, ValueError) as exc:
            if generation != self._generation:
                return
            self.stop()
            self.state = IDLE
            raise StartError(f"failed to read {self.path}: {exc}", self.source_id) from exc
        if generation != self._generation:
            # stopped (and possibly restarted) during the initial read
            return

        self._emit(InitialReadDone(lines))
        if generation != self._generation:
            return
        self._watcher = PollWatcher(
            self.path,
            self._on_change,
            self._on_watch_error,
            poll_interval=self.cfg.poll_interval,
            stability_threshold=self.cfg.stability_threshold,
        )
        # Baseline is the pre-read stat so writes made during the read still fire
        self._watcher.start(baseline=(st.st_size, st.st_mtime_ns, getattr(st, "st_ino", 0)))
        self.state = RUNNING

    def stop(self) -> None:
        if not self._running and self.state != STARTING:
            return
        self._running = False
        self._generation += 1
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self._close_handle()
        self._carry = b""
        self.state = STOPPED
        _log.info("stopped tailing %s", self.path)

    def _close_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()

    async def _on_change(self) -> None:
        if not self._running:
            return
        generation = self._generation
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return
        except OSError as exc:
            self._report(ReadError(f"stat failed for {self.path}: {exc}", self.source_id))
            return
        inode = getattr(st, "st_ino", None)
        if st.st_size < self.position or (self._inode is not None and inode != self._inode):
            # Truncated or replaced: replay the whole file
            _log.info(
                "%s truncated or rotated (size %d, cursor %d); reading from start",
                self.path,
                st.st_size,
                self.position,
            )
            self.position = 0
            self._carry = b""
            self._inode = inode
        if st.st_size <= self.position:
            return
        try:
            await self._read_to(st.st_size, generation)
        except OSError as exc:
            self._report(ReadError(f"error reading {self.path}: {exc}", self.source_id))

    async def _read_to(self, target: int, generation: int) -> int:
        """Stream bytes from the cursor up to ``target`` in bounded chunks.

        Gives up quietly as soon as ``generation`` is no longer current, so a
        read resumed after ``stop()`` never touches the cursor or the new handle.
        """
        count = 0
        handle = open(self.path, "rb")
        self._handle = handle
        try:
            handle.seek(self.position)
            while generation == self._generation and self.position < target:
                if handle.closed:
                    break
                chunk = handle.read(min(self.cfg.chunk_size, target - self.position))
                if not chunk:
                    break
                self.position += len(chunk)
                lines, self._carry = split_lines(self._carry, chunk, self.cfg.max_line_bytes)
                for line in lines:
                    if self._process_line(line):
                        count += 1
                await asyncio.sleep(0)
        finally:
            if self._handle is handle:
                self._handle = None
            handle.close()
        return count

    def _process_line(self, line: str) -> bool:
        if not line.strip():
            return False
        self._emit(classify(line))
        self.lines_emitted += 1
        return True

    def snapshot(self, max_bytes: Optional[int] = None) -> List[LineEvent]:
        """Re-read up to ``max_bytes`` of already consumed content, classified.

        Bounded and synchronous; gives late subscribers the same view a fresh
        tailer would have produced. Raises ``OSError`` if the file is unreadable.
        """
        limit = self.cfg.initial_tail_bytes if max_bytes is None else max_bytes
        end = self.position - len(self._carry)
        begin = max(0, end - limit)
        if end <= begin:
            return []
        with open(self.path, "rb") as handle:
            handle.seek(begin)
            data = handle.read(end - begin)
        lines, rest = split_lines(b"", data)
        if rest:
            lines.append(rest.decode("utf-8", errors="replace"))
        return [classify(line) for line in lines if line.strip()]


__all__ = ["FileTailer", "LineEvent", "InitialReadDone", "ErrorEvent", "TailEvent", "split_lines", "classify"]
