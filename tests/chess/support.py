from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import chess
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from chessrooms.chess.schemas.game import ChatEvent, GameRecord
from chessrooms.chess.services.broadcast import Broadcaster
from chessrooms.chess.services.controller import GameSessionController
from chessrooms.chess.services.lobby import LobbyCoordinator
from chessrooms.chess.services.persistence import GameFilter
from chessrooms.chess.services.registry import SessionRegistry
from chessrooms.chess.services.rules import RulesEngine
from chessrooms.core.db import init_db


def memory_engine() -> Engine:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


class MemoryGameStore:
    """Dict-backed GameStore. Copies on the way in and out like a real database."""

    def __init__(self) -> None:
        self.games: dict[str, GameRecord] = {}
        self.messages: list[ChatEvent] = []
        self.save_calls = 0

    def load(self, room_id: str) -> GameRecord | None:
        game = self.games.get(room_id)
        return game.model_copy(deep=True) if game is not None else None

    def save(self, game: GameRecord) -> GameRecord:
        self.save_calls += 1
        self.games[game.room_id] = game.model_copy(deep=True)
        return game.model_copy(deep=True)

    def append_chat(self, event: ChatEvent) -> ChatEvent:
        stored = event.model_copy(update={"id": str(len(self.messages) + 1)})
        self.messages.append(stored)
        return stored.model_copy()

    def load_chat_history(self, room_id: str, limit: int) -> list[ChatEvent]:
        room_messages = [event for event in self.messages if event.room_id == room_id]
        return room_messages[-limit:] if limit > 0 else []

    def list_games(self, game_filter: GameFilter) -> list[GameRecord]:
        games = [
            game
            for game in self.games.values()
            if game.status in game_filter.statuses
            and (game_filter.game_type is None or game.game_type == game_filter.game_type)
            and (game_filter.visibility is None or game.visibility == game_filter.visibility)
        ]
        return games[: game_filter.limit]

    def list_user_games(self, user_id: str, limit: int) -> list[GameRecord]:
        games = [game for game in self.games.values() if user_id in (game.white_player, game.black_player)]
        return games[:limit]


class RecordingConnection:
    """Connection double that keeps every pushed event."""

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.events: list[tuple[str, Any]] = []

    def push(self, event: str, data: Any) -> bool:
        self.events.append((event, data))
        return True

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> list[Any]:
        return [data for name, data in self.events if name == event]

    def clear(self) -> None:
        self.events.clear()


class ScriptedMoveGenerator:
    """Plays the given UCI moves in order."""

    def __init__(self, moves: Iterable[str] = ()) -> None:
        self.moves = list(moves)

    def choose_move(self, board: chess.Board) -> chess.Move:
        return chess.Move.from_uci(self.moves.pop(0))


def build_controller(
    store: Any | None = None,
    *,
    ai_moves: Iterable[str] = (),
    chat_history_limit: int = 100,
) -> GameSessionController:
    store = store if store is not None else MemoryGameStore()
    registry = SessionRegistry()
    return GameSessionController(
        store=store,
        lobby=LobbyCoordinator(store),
        rules=RulesEngine(),
        registry=registry,
        broadcaster=Broadcaster(registry),
        move_generator=ScriptedMoveGenerator(ai_moves),
        chat_history_limit=chat_history_limit,
    )
