from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from chessrooms.chess.errors import (
    AuthorizationError,
    ConflictError,
    GameFinishedError,
    NotFoundError,
    ValidationError,
)
from chessrooms.chess.schemas.game import (
    SYSTEM_AUTHOR,
    ChatEvent,
    GameRecord,
    GameType,
    Visibility,
    utcnow,
)
from chessrooms.chess.services.persistence import GameFilter, GameStore
from chessrooms.core.config import settings
from chessrooms.core.security import get_password_hash, verify_password

logger = logging.getLogger(__name__)

_ROOM_ID_ATTEMPTS = 5


@dataclass(frozen=True)
class JoinResult:
    game: GameRecord
    seated: bool
    started: bool


def _new_room_id() -> str:
    return uuid.uuid4().hex[:12]


class LobbyCoordinator:
    """Creates rooms and decides who may take a seat.

    ``apply_join`` is pure so the room controller can run it inside the room's
    critical section against its live copy of the game.
    """

    def __init__(self, store: GameStore) -> None:
        self.store = store

    def create_game(
        self,
        requester: str,
        game_type: GameType = "multiplayer",
        visibility: Visibility = "public",
        password: str | None = None,
        game_name: str | None = None,
    ) -> GameRecord:
        if not requester:
            raise ValidationError("A user id is required to create a game.")
        if visibility == "private" and not password:
            raise ValidationError("Private games require a password.")

        room_id = self._unused_room_id()
        now = utcnow()
        game = GameRecord(
            room_id=room_id,
            game_name=game_name,
            white_player=requester,
            black_player=None,
            status="waiting",
            game_type=game_type,
            visibility=visibility,
            password_hash=get_password_hash(password) if visibility == "private" and password else None,
            created_at=now,
            updated_at=now,
        )
        saved = self.store.save(game)
        logger.info(
            "Game created room_id=%s game_type=%s visibility=%s white=%s",
            room_id,
            game_type,
            visibility,
            requester,
        )
        return saved

    def load_game(self, room_id: str) -> GameRecord:
        game = self.store.load(room_id)
        if game is None:
            raise NotFoundError(f"Game {room_id} not found.")
        return game

    def list_games(self, game_filter: GameFilter | None = None) -> list[GameRecord]:
        return self.store.list_games(game_filter or GameFilter(limit=settings.GAME_LIST_LIMIT))

    def list_user_games(self, user_id: str) -> list[GameRecord]:
        return self.store.list_user_games(user_id, settings.GAME_LIST_LIMIT)

    def apply_join(self, game: GameRecord, requester: str, password: str | None = None) -> JoinResult:
        if not requester:
            raise ValidationError("A user id is required to join a game.")
        if game.is_finished:
            raise GameFinishedError(f"Game {game.room_id} is already finished.")

        updated = game.model_copy(deep=True)
        seated = False
        if updated.seat_of(requester) is None:
            if updated.visibility == "private" and not self._password_matches(updated, password):
                raise AuthorizationError("Invalid password.")
            seat = updated.open_seat()
            if seat is None:
                raise ConflictError("Game is full.")
            if seat == "white":
                updated.white_player = requester
            else:
                updated.black_player = requester
            seated = True

        started = False
        if updated.status == "waiting" and updated.seats_filled():
            updated.status = "active"
            started = True
        if seated or started:
            updated.updated_at = utcnow()
        return JoinResult(game=updated, seated=seated, started=started)

    @staticmethod
    def start_announcement(game: GameRecord) -> ChatEvent:
        if game.game_type == "ai":
            body = f"Game started: {game.white_player} (white) vs AI (black)."
        else:
            body = f"Game started: {game.white_player} (white) vs {game.black_player} (black)."
        return ChatEvent(room_id=game.room_id, author=SYSTEM_AUTHOR, kind="system", body=body)

    @staticmethod
    def _password_matches(game: GameRecord, password: str | None) -> bool:
        if not game.password_hash or not password:
            return False
        return verify_password(password, game.password_hash)

    def _unused_room_id(self) -> str:
        for _ in range(_ROOM_ID_ATTEMPTS):
            room_id = _new_room_id()
            if self.store.load(room_id) is None:
                return room_id
        raise ConflictError("Could not allocate a free room id.")
