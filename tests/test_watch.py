import asyncio
from pathlib import Path

import pytest

from conftest import wait_for
from logweave.errors import WatchError
from logweave.watch import PollWatcher


def _watcher(path: Path, calls: list, errors: list, handler=None) -> PollWatcher:
    async def on_change():
        calls.append(path.stat().st_size if path.exists() else None)
        if handler is not None:
            handler()

    return PollWatcher(str(path), on_change, errors.append, poll_interval=0.01, stability_threshold=0.05)


@pytest.mark.asyncio
async def test_burst_of_writes_fires_once(tmp_path: Path):
    p = tmp_path / "w.log"
    p.write_text("", encoding="utf-8")
    calls: list = []
    errors: list = []
    w = _watcher(p, calls, errors)
    w.start()
    try:
        for i in range(5):
            with p.open("a", encoding="utf-8") as h:
                h.write(f"line {i}\n")
        assert await wait_for(lambda: len(calls) >= 1)
        await asyncio.sleep(0.2)
        assert calls == [p.stat().st_size]
        assert errors == []
    finally:
        w.stop()
    assert not w.running


@pytest.mark.asyncio
async def test_quiet_file_never_fires(tmp_path: Path):
    p = tmp_path / "w.log"
    p.write_text("steady\n", encoding="utf-8")
    calls: list = []
    w = _watcher(p, calls, [])
    w.start()
    try:
        await asyncio.sleep(0.2)
        assert calls == []
    finally:
        w.stop()


@pytest.mark.asyncio
async def test_vanished_file_is_waited_for(tmp_path: Path):
    p = tmp_path / "w.log"
    p.write_text("a\n", encoding="utf-8")
    calls: list = []
    errors: list = []
    w = _watcher(p, calls, errors)
    w.start()
    try:
        p.unlink()
        await asyncio.sleep(0.2)
        assert calls == [] and errors == []
        p.write_text("back again\n", encoding="utf-8")
        assert await wait_for(lambda: len(calls) == 1)
    finally:
        w.stop()


@pytest.mark.asyncio
async def test_failing_handler_is_reported_and_watching_continues(tmp_path: Path):
    p = tmp_path / "w.log"
    p.write_text("", encoding="utf-8")
    calls: list = []
    errors: list = []

    def explode():
        if len(calls) == 1:
            raise RuntimeError("handler broke")

    w = _watcher(p, calls, errors, handler=explode)
    w.start()
    try:
        p.write_text("one\n", encoding="utf-8")
        assert await wait_for(lambda: len(errors) == 1)
        assert isinstance(errors[0], WatchError)
        p.write_text("one\ntwo\n", encoding="utf-8")
        assert await wait_for(lambda: len(calls) == 2)
    finally:
        w.stop()


@pytest.mark.asyncio
async def test_stop_cancels_polling(tmp_path: Path):
    p = tmp_path / "w.log"
    p.write_text("", encoding="utf-8")
    calls: list = []
    w = _watcher(p, calls, [])
    w.start()
    w.stop()
    p.write_text("ignored\n", encoding="utf-8")
    await asyncio.sleep(0.2)
    assert calls == []
