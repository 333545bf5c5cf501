import asyncio

import pytest

from conftest import RecordingSink
from logweave.registry import SubscriptionRegistry
from logweave.stdin import pump_stream


@pytest.mark.asyncio
async def test_pump_stream_feeds_subscribers_and_flushes_at_eof(sink: RecordingSink):
    reg = SubscriptionRegistry(sink)
    await reg.subscribe("s1", "stdin")
    reader = asyncio.StreamReader()
    reader.feed_data(b"INFO first\n  detail\nERR")
    reader.feed_data(b"OR last")
    reader.feed_eof()

    total = await pump_stream(reg, reader)

    assert total == len(b"INFO first\n  detail\nERROR last")
    live = [e for e in sink.of("s1") if e["type"] in ("log:entry", "log:append")]
    assert [e["type"] for e in live] == ["log:entry", "log:append", "log:entry"]
    assert live[2]["entry"]["level"] == "ERROR"
    assert live[2]["entry"]["message"] == "last"
    assert reg.has_piped_input


@pytest.mark.asyncio
async def test_piped_lines_without_subscribers_are_dropped(sink: RecordingSink):
    reg = SubscriptionRegistry(sink)
    reader = asyncio.StreamReader()
    reader.feed_data(b"INFO nobody listening\n")
    reader.feed_eof()
    await pump_stream(reg, reader)
    assert sink.events == []
    assert reg.source("stdin").active is False
