"""Optional FastAPI service pushing log events to WebSocket subscribers.

Install with `pip install logweave[server]` to enable.
This keeps the core library dependency-light.
"""
from __future__ import annotations

import asyncio
import json
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

try:  # pragma: no cover - optional dependency
    from fastapi import FastAPI, WebSocket, WebSocketDisconnect
    from pydantic import BaseModel, ValidationError
except Exception as exc:  # noqa: BLE001
    raise RuntimeError(
        "FastAPI not installed. Install with `pip install logweave[server]` to use the service."  # noqa: E501
    ) from exc

from .config import TailConfig
from .entry import utcnow
from .errors import StartError
from .logutil import get_logger
from .metrics import registry_metrics
from .registry import SubscriptionRegistry
from .sinks import Event, QueueSink
from .stdin import pump_stdin

_log = get_logger("service")


class ClientMessage(BaseModel):
    type: str
    path: Optional[str] = None
    name: Optional[str] = None
    size: Optional[int] = None
    lines: List[str] = []


class SourceInfo(BaseModel):
    id: str
    name: str
    path: str
    kind: str
    group: str
    active: bool
    entry_count: int
    last_activity: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str


async def _drain(websocket: WebSocket, queue: "asyncio.Queue[Optional[Event]]") -> None:
    while True:
        event = await queue.get()
        if event is None:
            return
        await websocket.send_json(event)


def build_app(config: Optional[TailConfig] = None, read_stdin: bool = False) -> FastAPI:
    cfg = config or TailConfig.from_env()
    sink = QueueSink(maxsize=cfg.queue_maxsize)
    registry = SubscriptionRegistry(sink, cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        pump: Optional["asyncio.Task[int]"] = None
        if read_stdin:
            pump = asyncio.create_task(pump_stdin(registry))
        try:
            yield
        finally:
            if pump is not None:
                pump.cancel()
            registry.close()
            sink.close()

    app = FastAPI(title="Logweave Service", version="0.3.0", lifespan=lifespan)
    app.state.registry = registry
    app.state.sink = sink

    async def tail_start(subscriber_id: str, path: str) -> None:
        try:
            await registry.subscribe(subscriber_id, path)
        except StartError as exc:
            sink.emit(
                subscriber_id,
                {"type": "error", "message": "Failed to start tailing file", "source": path, "detail": str(exc)},
            )

    async def handle(subscriber_id: str, msg: ClientMessage) -> None:
        if msg.type == "tail:start" and msg.path:
            await tail_start(subscriber_id, msg.path)
        elif msg.type == "tail:stop" and msg.path:
            registry.unsubscribe(subscriber_id, msg.path)
        elif msg.type == "file:upload" and msg.name:
            registry.submit(subscriber_id, msg.name, msg.lines)
        else:
            sink.emit(subscriber_id, {"type": "error", "message": f"unsupported message: {msg.type}"})

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:  # pragma: no cover - trivial
        return HealthResponse(status="healthy", timestamp=utcnow().isoformat())

    @app.get("/api/sources", response_model=List[SourceInfo])
    def sources() -> List[SourceInfo]:
        return [SourceInfo(**s.info()) for s in registry.sources]

    @app.get("/metrics")
    def metrics() -> Dict[str, Any]:
        return registry_metrics(registry)

    async def receive(subscriber_id: str, websocket: WebSocket) -> None:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = ClientMessage.model_validate(json.loads(raw))
            except (ValueError, ValidationError) as exc:
                sink.emit(subscriber_id, {"type": "error", "message": f"invalid message: {exc}"})
                continue
            await handle(subscriber_id, msg)

    @app.websocket("/ws")
    async def stream(websocket: WebSocket) -> None:
        await websocket.accept()
        subscriber_id = uuid.uuid4().hex
        queue = sink.attach(subscriber_id)
        sender = asyncio.create_task(_drain(websocket, queue))
        receiver: Optional["asyncio.Task[None]"] = None
        _log.info("subscriber %s connected", subscriber_id)
        try:
            if registry.has_piped_input:
                await registry.subscribe(subscriber_id, cfg.stdin_source)
            if cfg.auto_tail_file:
                await tail_start(subscriber_id, cfg.auto_tail_file)
            receiver = asyncio.create_task(receive(subscriber_id, websocket))
            await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if subscriber_id in sink.overflowed:
                # 1013: try again later
                await websocket.close(code=1013)
            elif receiver.done() and not receiver.cancelled():
                exc = receiver.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    raise exc
        except WebSocketDisconnect:
            pass
        finally:
            dropped = registry.unsubscribe_all(subscriber_id)
            sink.detach(subscriber_id)
            sink.overflowed.discard(subscriber_id)
            tasks = [t for t in (sender, receiver) if t is not None]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            _log.info("subscriber %s disconnected; dropped %d subscription(s)", subscriber_id, dropped)

    return app


def run(host: str = "127.0.0.1", port: int = 3001, config: Optional[TailConfig] = None, read_stdin: bool = True) -> None:  # pragma: no cover - integration feature
    import uvicorn

    uvicorn.run(build_app(config, read_stdin=read_stdin), host=host, port=port, log_level="info")


if __name__ == "__main__":  # pragma: no cover
    run(port=int(os.environ.get("PORT", "3001")))


__all__ = ["build_app", "run"]
