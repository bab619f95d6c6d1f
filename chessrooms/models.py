import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def get_datetime_utc() -> datetime:
    return datetime.now(timezone.utc)


# Database model for one chess room, keyed externally by room_id
class ChessRoomGame(SQLModel, table=True):
    __tablename__ = "chess_room_game"
    __table_args__ = (
        UniqueConstraint("room_id", name="uq_chess_room_game_room_id"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    room_id: str = Field(index=True, min_length=1, max_length=32)
    game_name: str | None = Field(default=None, max_length=120)
    white_player: str | None = Field(default=None, index=True, max_length=64)
    black_player: str | None = Field(default=None, index=True, max_length=64)
    status: str = Field(default="waiting", index=True, max_length=16)
    game_type: str = Field(default="multiplayer", max_length=16)
    visibility: str = Field(default="public", max_length=16)
    password_hash: str | None = Field(default=None, max_length=255)
    fen: str = Field(min_length=1, max_length=120)
    moves_json: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    winner: str | None = Field(default=None, max_length=8)
    pending_draw_offer: str | None = Field(default=None, max_length=8)
    created_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )


# Room-scoped chat and system annotations, append-only
class ChessRoomMessage(SQLModel, table=True):
    __tablename__ = "chess_room_message"

    # Autoincrement id defines append order.
    id: int | None = Field(default=None, primary_key=True)
    room_id: str = Field(index=True, min_length=1, max_length=32)
    author: str = Field(max_length=64)
    kind: str = Field(default="chat", max_length=16)
    body: str = Field(max_length=2000)
    created_at: datetime = Field(
        default_factory=get_datetime_utc,
        index=True,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
