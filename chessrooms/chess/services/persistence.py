from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from chessrooms.chess.errors import StorageError
from chessrooms.chess.schemas.game import (
    ChatEvent,
    GameRecord,
    GameStatus,
    GameType,
    Visibility,
    utcnow,
)
from chessrooms.models import ChessRoomGame, ChessRoomMessage

logger = logging.getLogger(__name__)


@dataclass
class GameFilter:
    statuses: Sequence[GameStatus] = field(default_factory=lambda: ("waiting", "active"))
    game_type: GameType | None = None
    visibility: Visibility | None = None
    limit: int = 50


class GameStore(Protocol):
    """Durable GameRecord storage keyed by room id."""

    def load(self, room_id: str) -> GameRecord | None:
        ...

    def save(self, game: GameRecord) -> GameRecord:
        ...

    def append_chat(self, event: ChatEvent) -> ChatEvent:
        ...

    def load_chat_history(self, room_id: str, limit: int) -> list[ChatEvent]:
        ...

    def list_games(self, game_filter: GameFilter) -> list[GameRecord]:
        ...

    def list_user_games(self, user_id: str, limit: int) -> list[GameRecord]:
        ...


def _to_record(row: ChessRoomGame) -> GameRecord:
    return GameRecord(
        room_id=row.room_id,
        game_name=row.game_name,
        white_player=row.white_player,
        black_player=row.black_player,
        status=row.status,
        game_type=row.game_type,
        visibility=row.visibility,
        password_hash=row.password_hash,
        fen=row.fen,
        move_history=list(row.moves_json or []),
        winner=row.winner,
        pending_draw_offer=row.pending_draw_offer,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_event(row: ChessRoomMessage) -> ChatEvent:
    return ChatEvent(
        id=str(row.id),
        room_id=row.room_id,
        author=row.author,
        kind=row.kind,
        body=row.body,
        created_at=row.created_at,
    )


class SQLGameStore:
    """GameStore over SQLModel tables. Every call uses its own short session."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def load(self, room_id: str) -> GameRecord | None:
        try:
            with Session(self.engine) as session:
                row = session.exec(
                    select(ChessRoomGame).where(ChessRoomGame.room_id == room_id)
                ).first()
        except SQLAlchemyError as exc:
            logger.exception("Game load failed room_id=%s", room_id)
            raise StorageError(f"Database read failed: {exc}") from exc
        return _to_record(row) if row is not None else None

    def save(self, game: GameRecord) -> GameRecord:
        now = utcnow()
        with Session(self.engine) as session:
            try:
                row = session.exec(
                    select(ChessRoomGame).where(ChessRoomGame.room_id == game.room_id)
                ).first()
                if row is None:
                    row = ChessRoomGame(room_id=game.room_id, fen=game.fen, created_at=game.created_at)
                row.game_name = game.game_name
                row.white_player = game.white_player
                row.black_player = game.black_player
                row.status = game.status
                row.game_type = game.game_type
                row.visibility = game.visibility
                row.password_hash = game.password_hash
                row.fen = game.fen
                row.moves_json = list(game.move_history)
                row.winner = game.winner
                row.pending_draw_offer = game.pending_draw_offer
                row.updated_at = now

                session.add(row)
                session.commit()
                session.refresh(row)
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("Game save failed room_id=%s", game.room_id)
                raise StorageError(f"Database write failed: {exc}") from exc
            return _to_record(row)

    def append_chat(self, event: ChatEvent) -> ChatEvent:
        with Session(self.engine) as session:
            try:
                row = ChessRoomMessage(
                    room_id=event.room_id,
                    author=event.author,
                    kind=event.kind,
                    body=event.body,
                    created_at=event.created_at,
                )
                session.add(row)
                session.commit()
                session.refresh(row)
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("Chat append failed room_id=%s", event.room_id)
                raise StorageError(f"Database write failed: {exc}") from exc
            return _to_event(row)

    def load_chat_history(self, room_id: str, limit: int) -> list[ChatEvent]:
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(ChessRoomMessage)
                    .where(ChessRoomMessage.room_id == room_id)
                    .order_by(col(ChessRoomMessage.id).desc())
                    .limit(max(limit, 0))
                ).all()
        except SQLAlchemyError as exc:
            logger.exception("Chat history load failed room_id=%s", room_id)
            raise StorageError(f"Database read failed: {exc}") from exc
        # Newest N were selected; subscribers replay them oldest first.
        return [_to_event(row) for row in reversed(rows)]

    def list_games(self, game_filter: GameFilter) -> list[GameRecord]:
        statement = select(ChessRoomGame)
        if game_filter.statuses:
            statement = statement.where(col(ChessRoomGame.status).in_(list(game_filter.statuses)))
        if game_filter.game_type is not None:
            statement = statement.where(ChessRoomGame.game_type == game_filter.game_type)
        if game_filter.visibility is not None:
            statement = statement.where(ChessRoomGame.visibility == game_filter.visibility)
        statement = statement.order_by(col(ChessRoomGame.created_at).desc()).limit(max(game_filter.limit, 0))
        return self._fetch_games(statement)

    def list_user_games(self, user_id: str, limit: int) -> list[GameRecord]:
        statement = (
            select(ChessRoomGame)
            .where(
                or_(
                    col(ChessRoomGame.white_player) == user_id,
                    col(ChessRoomGame.black_player) == user_id,
                )
            )
            .order_by(col(ChessRoomGame.created_at).desc())
            .limit(max(limit, 0))
        )
        return self._fetch_games(statement)

    def _fetch_games(self, statement) -> list[GameRecord]:
        try:
            with Session(self.engine) as session:
                rows = session.exec(statement).all()
        except SQLAlchemyError as exc:
            logger.exception("Game listing failed")
            raise StorageError(f"Database read failed: {exc}") from exc
        return [_to_record(row) for row in rows]
