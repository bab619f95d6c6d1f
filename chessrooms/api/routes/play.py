from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chessrooms.chess.errors import ValidationError
from chessrooms.chess.services.broadcast import QueuedConnection
from chessrooms.core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chess", tags=["chess"])


@router.websocket("/ws")
async def play_socket(websocket: WebSocket) -> None:
    """Room event socket.

    Frames are JSON objects ``{"event": ..., "data": {...}}`` in both
    directions. A connection must ``subscribe`` before sending room events.
    """
    controller = websocket.app.state.controller
    await websocket.accept()
    connection = QueuedConnection(websocket.send_json, max_queue=settings.CONNECTION_QUEUE_SIZE)
    pump = asyncio.create_task(connection.pump())
    logger.info("Socket connected connection=%s", connection.connection_id)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            raw = message.get("text")
            if raw is None:
                controller.broadcaster.send_error(connection, ValidationError("Binary frames are not supported."))
                continue
            try:
                frame = json.loads(raw)
            except ValueError:
                controller.broadcaster.send_error(connection, ValidationError("Frames must be JSON objects."))
                continue
            await controller.handle(connection, frame)
    except WebSocketDisconnect as exc:
        logger.info("Socket disconnected connection=%s code=%s", connection.connection_id, exc.code)
    finally:
        await controller.unsubscribe(connection)
        connection.close()
        await pump
