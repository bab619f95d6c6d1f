from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from chessrooms.chess.schemas.game import (
    ChatEvent,
    GameRecord,
    GameStatus,
    GameType,
    Visibility,
)

UCI_MOVE_PATTERN = r"^[a-h][1-8][a-h][1-8][nbrq]?$"
SQUARE_PATTERN = r"^[a-h][1-8]$"


class APIModel(BaseModel):
    """Base model settings shared across API schemas."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ApiMessage(APIModel):
    """Simple success/failure response payload."""

    ok: bool = Field(description="Whether the request completed successfully.", default=True)
    message: str | None = Field(
        default=None,
        description="Optional human-readable status message.",
    )


class ApiError(APIModel):
    """Standardized error details for rejected room actions."""

    error: str = Field(description="Primary error message.")
    code: str | None = Field(
        default=None,
        description="Stable machine-readable error code, e.g. not_found or conflict.",
    )


class CreateGameRequest(APIModel):
    """Request body for opening a new room."""

    game_type: GameType = Field(
        default="multiplayer",
        alias="gameType",
        description="multiplayer seats a second human; ai plays black on request.",
    )
    visibility: Visibility = Field(
        default="public",
        description="Private rooms require the password to join.",
    )
    password: str | None = Field(
        default=None,
        min_length=1,
        max_length=64,
        description="Join password for private rooms. Stored hashed.",
    )
    game_name: str | None = Field(
        default=None,
        alias="gameName",
        max_length=120,
        description="Optional display label for the lobby.",
    )

    @field_validator("game_name")
    @classmethod
    def normalize_game_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = " ".join(value.split())
        return normalized or None

    @model_validator(mode="after")
    def validate_password_for_private(self) -> CreateGameRequest:
        if self.visibility == "private" and not self.password:
            raise ValueError("private games require a password")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "gameType": "multiplayer",
                "visibility": "private",
                "password": "knightfork",
                "gameName": "Friday blitz",
            }
        }
    )


class JoinGameRequest(APIModel):
    """Request body for taking the open seat in a room."""

    password: str | None = Field(default=None, max_length=64)


class ChatMessageRequest(APIModel):
    """Request body for posting a chat line to a room."""

    body: str = Field(min_length=1, max_length=2000, alias="message")


class GamePublic(APIModel):
    """Lobby view of a game. Never carries the password hash."""

    room_id: str
    game_name: str | None = None
    white_player: str | None = None
    black_player: str | None = None
    status: GameStatus
    game_type: GameType
    visibility: Visibility
    fen: str
    move_history: list[str] = Field(default_factory=list)
    winner: str | None = None
    pending_draw_offer: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, game: GameRecord) -> GamePublic:
        return cls.model_validate(game.model_dump(exclude={"password_hash"}))


class GamesPublic(APIModel):
    data: list[GamePublic]
    count: int


class ChatHistoryResponse(APIModel):
    room_id: str
    count: int
    messages: list[ChatEvent]
