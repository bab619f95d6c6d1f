from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, field_validator

from chessrooms.chess.schemas.api import SQUARE_PATTERN, APIModel

# Client -> server
SUBSCRIBE = "subscribe"
JOIN = "join"
SUBMIT_MOVE = "submit-move"
RESIGN = "resign"
OFFER_DRAW = "offer-draw"
ACCEPT_DRAW = "accept-draw"
DECLINE_DRAW = "decline-draw"
REQUEST_AI_MOVE = "request-ai-move"
CHAT = "chat"

# Server -> client
GAME_STATE = "game-state"
CHAT_HISTORY = "chat-history"
MOVE_MADE = "move-made"
AI_MOVE_MADE = "ai-move-made"
CHAT_MESSAGE = "chat-message"
DRAW_OFFER = "draw-offer"
DRAW_OFFER_DECLINED = "draw-offer-declined"
PLAYER_JOINED = "player-joined"
PLAYER_DISCONNECTED = "player-disconnected"
ERROR = "error"


class MoveSpec(APIModel):
    """Square-pair form of a move, as sent by board widgets."""

    from_square: str = Field(alias="from", pattern=SQUARE_PATTERN)
    to_square: str = Field(alias="to", pattern=SQUARE_PATTERN)
    promotion: Literal["q", "r", "b", "n"] | None = None

    @field_validator("from_square", "to_square", "promotion", mode="before")
    @classmethod
    def lowercase(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


MoveInput = str | MoveSpec


class ClientFrame(APIModel):
    """One inbound websocket frame: ``{"event": ..., "data": {...}}``."""

    event: str = Field(min_length=1, max_length=32)
    data: dict[str, Any] = Field(default_factory=dict)


class RoomPayload(APIModel):
    """Fields every room-scoped client event may carry."""

    room_id: str | None = Field(default=None, alias="roomId", max_length=32)
    user_id: str | None = Field(default=None, alias="userId", max_length=64)


class SubscribePayload(RoomPayload):
    room_id: str = Field(alias="roomId", min_length=1, max_length=32)
    user_id: str = Field(alias="userId", min_length=1, max_length=64)


class JoinPayload(RoomPayload):
    password: str | None = Field(default=None, max_length=64)


class SubmitMovePayload(RoomPayload):
    move: MoveInput

    @field_validator("move", mode="before")
    @classmethod
    def strip_move(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValueError("move must not be empty")
            return stripped
        return value


class ChatPayload(RoomPayload):
    body: str = Field(alias="message", min_length=1, max_length=2000)
