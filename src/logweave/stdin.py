"""Feed piped input into the registry's ``stdin`` pseudo-source."""
from __future__ import annotations

import asyncio
import sys
from typing import BinaryIO, Optional

from .logutil import get_logger
from .registry import SubscriptionRegistry

_log = get_logger("stdin")

_READ_SIZE = 65536


async def pump_stream(registry: SubscriptionRegistry, reader: asyncio.StreamReader) -> int:
    """Copy ``reader`` into the registry until EOF. Returns the byte count."""
    total = 0
    try:
        while True:
            data = await reader.read(_READ_SIZE)
            if not data:
                break
            total += len(data)
            registry.feed_stdin(data)
    finally:
        registry.close_stdin()
    _log.info("piped input ended after %d bytes", total)
    return total


async def pump_stdin(registry: SubscriptionRegistry, stream: Optional[BinaryIO] = None) -> int:
    """Attach the process's stdin (a pipe or file) to the event loop and pump it."""
    source = stream if stream is not None else sys.stdin.buffer
    if source.isatty():
        _log.debug("stdin is a terminal; no piped input")
        return 0
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    try:
        transport, _ = await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), source)
    except ValueError:
        # Redirected regular file: not pollable, read it in bounded blocks off-loop
        return await _pump_file(registry, source)
    try:
        return await pump_stream(registry, reader)
    finally:
        transport.close()


async def _pump_file(registry: SubscriptionRegistry, source: BinaryIO) -> int:
    loop = asyncio.get_running_loop()
    total = 0
    try:
        while True:
            data = await loop.run_in_executor(None, source.read, _READ_SIZE)
            if not data:
                break
            total += len(data)
            registry.feed_stdin(data)
    finally:
        registry.close_stdin()
    return total


__all__ = ["pump_stream", "pump_stdin"]
