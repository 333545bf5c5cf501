import asyncio
import os
from typing import Awaitable, Callable, Optional, Tuple

from .errors import WatchError
from .logutil import get_logger

_log = get_logger("watch")

Signature = Optional[Tuple[int, int, int]]


def _signature(path: str) -> Signature:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return None
    return st.st_size, st.st_mtime_ns, getattr(st, "st_ino", 0)


class PollWatcher:
    """Debounced change watcher built on stat polling (no extra deps).

    A change fires ``on_change`` only once the file's (size, mtime, inode)
    signature has been quiet for ``stability_threshold`` seconds, so a burst of
    writes produces a single notification. ``on_change`` is awaited before the
    next poll; notifications for one file never overlap. A vanished file is a
    rotation gap, not an error: polling continues until it reappears.
    """

    def __init__(
        self,
        path: str,
        on_change: Callable[[], Awaitable[None]],
        on_error: Callable[[WatchError], None],
        poll_interval: float = 0.1,
        stability_threshold: float = 0.1,
    ) -> None:
        self.path = path
        self.on_change = on_change
        self.on_error = on_error
        self.poll_interval = max(0.001, poll_interval)
        self.stability_threshold = max(0.0, stability_threshold)
        self._task: Optional["asyncio.Task[None]"] = None
        self._reported: Signature = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, baseline: Signature = None) -> None:
        """Begin polling. Changes are measured against ``baseline`` (default: now)."""
        if self._task is not None:
            return
        if baseline is not None:
            self._reported = baseline
        else:
            try:
                self._reported = _signature(self.path)
            except OSError as exc:
                self._reported = None
                self.on_error(WatchError(f"stat failed for {self.path}: {exc}", self.path))
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"logweave-watch:{self.path}")

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        last_seen = self._reported
        changed_at: Optional[float] = None
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                sig = _signature(self.path)
            except OSError as exc:
                self.on_error(WatchError(f"stat failed for {self.path}: {exc}", self.path))
                continue
            now = loop.time()
            if sig != last_seen:
                last_seen = sig
                changed_at = now
                continue
            if changed_at is None or sig == self._reported:
                continue
            if now - changed_at < self.stability_threshold:
                continue
            self._reported = sig
            changed_at = None
            if sig is None:
                _log.debug("%s disappeared; waiting for it to come back", self.path)
                continue
            try:
                await self.on_change()
            except Exception as exc:  # noqa: BLE001 - keep watching after a failed handler
                self.on_error(WatchError(f"change handler failed for {self.path}: {exc}", self.path))


__all__ = ["PollWatcher"]
