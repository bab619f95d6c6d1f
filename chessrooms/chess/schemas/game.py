from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

import chess
from pydantic import BaseModel, ConfigDict, Field

Color = Literal["white", "black"]
GameStatus = Literal["waiting", "active", "finished"]
GameType = Literal["multiplayer", "ai"]
Visibility = Literal["public", "private"]
Winner = Literal["white", "black", "draw"]
ChatKind = Literal["chat", "system", "game_event"]

SYSTEM_AUTHOR = "system"
AI_SEAT: Color = "black"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def other_color(color: Color) -> Color:
    return "black" if color == "white" else "white"


def turn_from_fen(fen: str) -> Color:
    parts = fen.split()
    return "black" if len(parts) > 1 and parts[1] == "b" else "white"


class GameRecord(BaseModel):
    """Authoritative state of one room, as persisted in the GameRecord store."""

    model_config = ConfigDict(validate_assignment=True)

    room_id: str = Field(min_length=1, max_length=32)
    game_name: str | None = None
    white_player: str | None = None
    black_player: str | None = None
    status: GameStatus = "waiting"
    game_type: GameType = "multiplayer"
    visibility: Visibility = "public"
    password_hash: str | None = None
    fen: str = chess.STARTING_FEN
    move_history: list[str] = Field(default_factory=list)
    winner: Winner | None = None
    pending_draw_offer: Color | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def turn(self) -> Color:
        return turn_from_fen(self.fen)

    @property
    def is_finished(self) -> bool:
        return self.status == "finished"

    def seat_of(self, user_id: str | None) -> Color | None:
        if not user_id:
            return None
        if self.white_player == user_id:
            return "white"
        if self.black_player == user_id:
            return "black"
        return None

    def open_seat(self) -> Color | None:
        if self.white_player is None:
            return "white"
        if self.black_player is None and self.game_type != "ai":
            return "black"
        return None

    def seats_filled(self) -> bool:
        # The AI holds the black seat of an ai game without a stored identity.
        if self.game_type == "ai":
            return self.white_player is not None
        return self.white_player is not None and self.black_player is not None


class ChatEvent(BaseModel):
    """Room-scoped chat line or system annotation. Never mutated once stored."""

    id: str | None = None
    room_id: str
    author: str
    kind: ChatKind = "chat"
    body: str = Field(min_length=1, max_length=2000)
    created_at: datetime = Field(default_factory=utcnow)


class CapturedPieces(BaseModel):
    """Pieces each side has taken, as lowercase python-chess symbols."""

    white: list[str] = Field(default_factory=list)
    black: list[str] = Field(default_factory=list)


class GameState(BaseModel):
    """Snapshot pushed to subscribers after every accepted change."""

    room_id: str
    fen: str
    turn: Color
    is_check: bool = False
    is_checkmate: bool = False
    is_stalemate: bool = False
    is_draw: bool = False
    draw_reason: str | None = None
    status: GameStatus
    winner: Winner | None = None
    pending_draw_offer: Color | None = None
    game_type: GameType
    white_player: str | None = None
    black_player: str | None = None
    moves: list[str] = Field(default_factory=list, description="Applied moves in UCI.")
    history: list[str] = Field(default_factory=list, description="Applied moves in SAN.")
    last_move: str | None = None
    captured: CapturedPieces = Field(default_factory=CapturedPieces)
