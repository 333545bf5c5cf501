import asyncio
import time
from typing import Any, Callable, Dict, List, Tuple

import pytest

from logweave.config import TailConfig


class RecordingSink:
    """Collects (subscriber_id, event) pairs in delivery order."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self.closed = False

    def emit(self, subscriber_id: str, event: Dict[str, Any]) -> None:
        self.events.append((subscriber_id, event))

    def close(self) -> None:
        self.closed = True

    def of(self, subscriber_id: str, kind: str = None) -> List[Dict[str, Any]]:
        return [e for s, e in self.events if s == subscriber_id and (kind is None or e["type"] == kind)]


async def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


@pytest.fixture
def fast_config() -> TailConfig:
    return TailConfig(poll_interval=0.01, stability_threshold=0.02)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
