from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi.encoders import jsonable_encoder

from chessrooms.chess.errors import GameError
from chessrooms.chess.schemas.events import ERROR
from chessrooms.chess.services.registry import Connection, SessionRegistry

logger = logging.getLogger(__name__)


def serialize_error(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, GameError):
        return {"code": exc.code, "message": exc.message}
    return {"code": "internal_error", "message": "Unexpected server error."}


class QueuedConnection:
    """Connection whose pushes are buffered and written by a single pump task.

    Pushing never awaits, so rooms can enqueue inside their critical section
    and every subscriber sees events in the order they were pushed.
    """

    def __init__(
        self,
        send_json: Callable[[dict[str, Any]], Awaitable[None]],
        *,
        max_queue: int = 256,
        connection_id: str | None = None,
    ) -> None:
        self.connection_id = connection_id or f"conn-{uuid.uuid4().hex[:12]}"
        self._send_json = send_json
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=max(1, max_queue))
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: str, data: Any) -> bool:
        if self._closed:
            return False
        frame = {"event": event, "data": jsonable_encoder(data)}
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("Dropping event=%s for slow connection=%s", event, self.connection_id)
            return False
        return True

    async def pump(self) -> None:
        logger.debug("Connection pump started connection=%s", self.connection_id)
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                await self._send_json(frame)
        except asyncio.CancelledError:
            logger.debug("Connection pump cancelled connection=%s", self.connection_id)
        except Exception:
            # Stale sockets are resynchronized by their next subscribe.
            logger.warning("Connection pump stopped on send failure connection=%s", self.connection_id)
        finally:
            self._closed = True
            logger.debug("Connection pump finished connection=%s", self.connection_id)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Drop the backlog so the pump sees the stop marker.
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(None)


class Broadcaster:
    """Best-effort fan-out of room events to bound connections."""

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    def broadcast(
        self,
        room_id: str,
        event: str,
        payload: Any,
        *,
        exclude: Connection | None = None,
    ) -> int:
        delivered = 0
        data = jsonable_encoder(payload)
        for connection in self.registry.subscribers_of(room_id):
            if exclude is not None and connection.connection_id == exclude.connection_id:
                continue
            if connection.push(event, data):
                delivered += 1
        logger.debug("Broadcast room_id=%s event=%s delivered=%s", room_id, event, delivered)
        return delivered

    def send(self, connection: Connection, event: str, payload: Any) -> bool:
        return connection.push(event, jsonable_encoder(payload))

    def send_error(self, connection: Connection, exc: Exception) -> bool:
        return connection.push(ERROR, serialize_error(exc))
