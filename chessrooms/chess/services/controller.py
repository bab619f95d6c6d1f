from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import chess.engine
from pydantic import ValidationError as PydanticValidationError

from chessrooms.chess import errors
from chessrooms.chess.errors import (
    GameError,
    GameFinishedError,
    InvalidStateError,
    NoPendingOfferError,
    NotAITurnError,
    NotFoundError,
    NotParticipantError,
    NotYourTurnError,
)
from chessrooms.chess.schemas import events
from chessrooms.chess.schemas.events import (
    ChatPayload,
    ClientFrame,
    JoinPayload,
    MoveInput,
    RoomPayload,
    SubmitMovePayload,
    SubscribePayload,
)
from chessrooms.chess.schemas.game import (
    AI_SEAT,
    SYSTEM_AUTHOR,
    ChatEvent,
    ChatKind,
    Color,
    GameRecord,
    GameState,
    other_color,
    utcnow,
)
from chessrooms.chess.services.ai import MoveGenerator
from chessrooms.chess.services.broadcast import Broadcaster
from chessrooms.chess.services.lobby import LobbyCoordinator
from chessrooms.chess.services.persistence import GameStore
from chessrooms.chess.services.registry import Binding, Connection, SessionRegistry
from chessrooms.chess.services.rules import RulesEngine

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class RoomState:
    """Live copy of one room. ``game`` is only replaced after a successful save."""

    room_id: str
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    chat_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    game: GameRecord | None = None
    inflight: int = 0


def _color_label(color: Color) -> str:
    return color.capitalize()


class GameSessionController:
    """Authoritative per-room state machine.

    Every mutation runs under the room's lock: validate, mutate a copy, persist,
    swap the live copy, then enqueue broadcasts. Rooms never share a lock.
    Chat appends take only the room's chat lock (always acquired after the game
    lock when both are held), which keeps chat ordered without blocking moves.
    """

    def __init__(
        self,
        *,
        store: GameStore,
        lobby: LobbyCoordinator,
        rules: RulesEngine,
        registry: SessionRegistry,
        broadcaster: Broadcaster,
        move_generator: MoveGenerator,
        chat_history_limit: int = 100,
        ai_player_id: str = "ai",
    ) -> None:
        self.store = store
        self.lobby = lobby
        self.rules = rules
        self.registry = registry
        self.broadcaster = broadcaster
        self.move_generator = move_generator
        self.chat_history_limit = chat_history_limit
        self.ai_player_id = ai_player_id
        self._rooms: dict[str, RoomState] = {}
        self._handlers: dict[str, Callable[[Connection, dict[str, Any]], Any]] = {
            events.SUBSCRIBE: self._on_subscribe,
            events.JOIN: self._on_join,
            events.SUBMIT_MOVE: self._on_submit_move,
            events.RESIGN: self._on_resign,
            events.OFFER_DRAW: self._on_offer_draw,
            events.ACCEPT_DRAW: self._on_accept_draw,
            events.DECLINE_DRAW: self._on_decline_draw,
            events.REQUEST_AI_MOVE: self._on_request_ai_move,
            events.CHAT: self._on_chat,
        }

    # -- room bookkeeping --

    def active_room_ids(self) -> list[str]:
        return list(self._rooms.keys())

    def _room(self, room_id: str) -> RoomState:
        room = self._rooms.get(room_id)
        if room is None:
            room = RoomState(room_id=room_id)
            self._rooms[room_id] = room
        return room

    def _maybe_evict(self, room: RoomState) -> None:
        if room.inflight > 0 or room.lock.locked():
            return
        if self.registry.subscriber_count(room.room_id) > 0:
            return
        if self._rooms.get(room.room_id) is room:
            del self._rooms[room.room_id]
            logger.debug("Evicted idle room room_id=%s", room.room_id)

    @asynccontextmanager
    async def _exclusive(self, room_id: str) -> AsyncIterator[RoomState]:
        if not room_id:
            raise errors.ValidationError("A room id is required.")
        room = self._room(room_id)
        room.inflight += 1
        try:
            async with room.lock:
                if room.game is None:
                    game = await asyncio.to_thread(self.store.load, room_id)
                    if game is None:
                        raise NotFoundError(f"Game {room_id} not found.")
                    room.game = game
                yield room
        finally:
            room.inflight -= 1
            self._maybe_evict(room)

    async def _commit(self, room: RoomState, updated: GameRecord) -> GameRecord:
        try:
            saved = await asyncio.to_thread(self.store.save, updated)
        except asyncio.CancelledError:
            # The save may still land; reload from the store on next use.
            room.game = None
            raise
        room.game = saved
        return saved

    async def _announce(self, room: RoomState, body: str, kind: ChatKind = "system") -> ChatEvent | None:
        event = ChatEvent(room_id=room.room_id, author=SYSTEM_AUTHOR, kind=kind, body=body)
        async with room.chat_lock:
            try:
                stored = await asyncio.to_thread(self.store.append_chat, event)
            except errors.StorageError:
                # The game itself is already durable; only the annotation is lost.
                logger.exception("System chat event was not stored room_id=%s", room.room_id)
                return None
            self.broadcaster.broadcast(room.room_id, events.CHAT_MESSAGE, stored.model_dump(mode="json"))
        return stored

    # -- snapshots --

    def game_state(self, game: GameRecord) -> GameState:
        view = self.rules.describe(game.fen, game.move_history)
        return GameState(
            room_id=game.room_id,
            fen=game.fen,
            turn=view.turn,
            is_check=view.is_check,
            is_checkmate=view.is_checkmate,
            is_stalemate=view.is_stalemate,
            is_draw=game.winner == "draw" or view.is_draw,
            draw_reason=view.draw_reason,
            status=game.status,
            winner=game.winner,
            pending_draw_offer=game.pending_draw_offer,
            game_type=game.game_type,
            white_player=game.white_player,
            black_player=game.black_player,
            moves=list(game.move_history),
            history=view.history,
            last_move=view.last_move,
            captured=view.captured,
        )

    async def snapshot(self, room_id: str) -> GameState:
        room = self._rooms.get(room_id)
        game = room.game if room is not None else None
        if game is None:
            game = await asyncio.to_thread(self.lobby.load_game, room_id)
        return self.game_state(game)

    async def chat_history(self, room_id: str) -> list[ChatEvent]:
        await self._require_room_exists(room_id)
        return await asyncio.to_thread(self.store.load_chat_history, room_id, self.chat_history_limit)

    # -- preconditions --

    @staticmethod
    def _require_active(game: GameRecord) -> None:
        if game.status == "finished":
            raise GameFinishedError()
        if game.status != "active":
            raise InvalidStateError("Game has not started yet.")

    @staticmethod
    def _require_seat(game: GameRecord, requester: str) -> Color:
        seat = game.seat_of(requester)
        if seat is None:
            raise NotParticipantError()
        return seat

    async def _require_room_exists(self, room_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is not None and room.game is not None:
            return
        if not room_id:
            raise errors.ValidationError("A room id is required.")
        game = await asyncio.to_thread(self.store.load, room_id)
        if game is None:
            raise NotFoundError(f"Game {room_id} not found.")

    # -- presence --

    async def subscribe(self, connection: Connection, room_id: str, user_id: str) -> GameState:
        if not user_id:
            raise errors.ValidationError("A user id is required.")
        async with self._exclusive(room_id) as room:
            game = room.game
            started = False
            if game.game_type == "ai" and game.status == "waiting" and game.seat_of(user_id) == "white":
                result = self.lobby.apply_join(game, user_id)
                if result.started:
                    game = await self._commit(room, result.game)
                    started = True

            async with room.chat_lock:
                # Bind only once the snapshot can be sent.
                history = await asyncio.to_thread(self.store.load_chat_history, room_id, self.chat_history_limit)
                previous = self.registry.bind(connection, room_id, user_id)
                state = self.game_state(game)
                self.broadcaster.send(connection, events.GAME_STATE, state.model_dump(mode="json"))
                self.broadcaster.send(
                    connection,
                    events.CHAT_HISTORY,
                    [event.model_dump(mode="json") for event in history],
                )
                self.broadcaster.broadcast(
                    room_id,
                    events.PLAYER_JOINED,
                    {"userId": user_id, "roomId": room_id, "seat": game.seat_of(user_id)},
                    exclude=connection,
                )
                if started:
                    self.broadcaster.broadcast(
                        room_id, events.GAME_STATE, state.model_dump(mode="json"), exclude=connection
                    )

            if started:
                await self._announce(room, self.lobby.start_announcement(game).body)

        if previous is not None and previous.room_id != room_id:
            self._notify_departure(previous)
        logger.info("User subscribed room_id=%s user_id=%s connection=%s", room_id, user_id, connection.connection_id)
        return state

    async def unsubscribe(self, connection: Connection) -> Binding | None:
        binding = self.registry.unbind(connection)
        if binding is None:
            return None
        self._notify_departure(binding)
        logger.info(
            "User unsubscribed room_id=%s user_id=%s connection=%s",
            binding.room_id,
            binding.user_id,
            connection.connection_id,
        )
        return binding

    def _notify_departure(self, binding: Binding) -> None:
        self.broadcaster.broadcast(
            binding.room_id,
            events.PLAYER_DISCONNECTED,
            {"userId": binding.user_id, "roomId": binding.room_id},
        )
        room = self._rooms.get(binding.room_id)
        if room is not None:
            self._maybe_evict(room)

    # -- lobby join --

    async def join_game(self, requester: str, room_id: str, password: str | None = None) -> GameRecord:
        async with self._exclusive(room_id) as room:
            result = self.lobby.apply_join(room.game, requester, password)
            game = room.game
            if result.seated or result.started:
                game = await self._commit(room, result.game)
                self.broadcaster.broadcast(
                    room_id, events.GAME_STATE, self.game_state(game).model_dump(mode="json")
                )
                logger.info(
                    "User joined game room_id=%s user_id=%s seat=%s started=%s",
                    room_id,
                    requester,
                    game.seat_of(requester),
                    result.started,
                )
            if result.started:
                await self._announce(room, self.lobby.start_announcement(game).body)
            return game

    # -- game actions --

    async def submit_move(self, requester: str, room_id: str, move: MoveInput) -> GameState:
        async with self._exclusive(room_id) as room:
            game = room.game
            self._require_active(game)
            seat = self._require_seat(game, requester)
            if seat != game.turn:
                raise NotYourTurnError()
            return await self._apply_move(room, move, mover_id=requester, event=events.MOVE_MADE)

    async def request_ai_move(self, requester: str, room_id: str) -> GameState:
        async with self._exclusive(room_id) as room:
            game = room.game
            if game.game_type != "ai":
                raise NotAITurnError("AI move not available for this game.")
            self._require_active(game)
            self._require_seat(game, requester)
            if game.turn != AI_SEAT:
                raise NotAITurnError("It is not the AI's turn.")

            board = self.rules.build_board(game.fen, game.move_history)
            try:
                move = await asyncio.to_thread(self.move_generator.choose_move, board)
            except (chess.engine.EngineError, OSError) as exc:
                raise NotAITurnError(f"AI engine failed: {exc}") from exc
            return await self._apply_move(room, move.uci(), mover_id=self.ai_player_id, event=events.AI_MOVE_MADE)

    async def _apply_move(self, room: RoomState, move: MoveInput, *, mover_id: str, event: str) -> GameState:
        game = room.game
        mover = game.turn
        outcome = self.rules.apply_move(game.fen, move, game.move_history)

        updated = game.model_copy(deep=True)
        updated.fen = outcome.fen
        updated.move_history = [*game.move_history, outcome.uci]
        updated.pending_draw_offer = None
        updated.updated_at = utcnow()
        conclusion: str | None = None
        if outcome.is_checkmate:
            updated.status = "finished"
            updated.winner = mover
            conclusion = f"Checkmate. {_color_label(mover)} wins."
        elif outcome.is_stalemate or outcome.is_draw_by_rule:
            updated.status = "finished"
            updated.winner = "draw"
            reason = (outcome.draw_reason or "stalemate").replace("_", " ")
            conclusion = f"Draw by {reason}."

        saved = await self._commit(room, updated)
        state = self.game_state(saved)
        self.broadcaster.broadcast(room.room_id, event, state.model_dump(mode="json"))
        logger.info(
            "Move applied room_id=%s by=%s move=%s san=%s ply=%s",
            room.room_id,
            mover_id,
            outcome.uci,
            outcome.san,
            len(saved.move_history),
        )
        if conclusion is not None:
            logger.info("Game finished room_id=%s winner=%s", room.room_id, saved.winner)
            await self._announce(room, conclusion, kind="game_event")
        return state

    async def resign(self, requester: str, room_id: str) -> GameState:
        async with self._exclusive(room_id) as room:
            game = room.game
            self._require_active(game)
            seat = self._require_seat(game, requester)

            updated = game.model_copy(deep=True)
            updated.status = "finished"
            updated.winner = other_color(seat)
            updated.pending_draw_offer = None
            updated.updated_at = utcnow()
            saved = await self._commit(room, updated)

            state = self.game_state(saved)
            self.broadcaster.broadcast(room_id, events.GAME_STATE, state.model_dump(mode="json"))
            logger.info("Player resigned room_id=%s user_id=%s seat=%s", room_id, requester, seat)
            await self._announce(
                room,
                f"{requester} ({seat}) resigned. {_color_label(other_color(seat))} wins.",
            )
            return state

    async def offer_draw(self, requester: str, room_id: str) -> GameState:
        async with self._exclusive(room_id) as room:
            game = room.game
            self._require_active(game)
            seat = self._require_seat(game, requester)
            if game.game_type == "ai":
                raise InvalidStateError("The AI does not accept draw offers.")
            if game.pending_draw_offer == seat:
                raise InvalidStateError("Your draw offer is already pending.")
            if game.pending_draw_offer == other_color(seat):
                # Offering back while the opponent's offer is pending accepts it.
                return await self._finish_by_agreement(room, requester)

            updated = game.model_copy(deep=True)
            updated.pending_draw_offer = seat
            updated.updated_at = utcnow()
            saved = await self._commit(room, updated)
            self.broadcaster.broadcast(
                room_id,
                events.DRAW_OFFER,
                {"color": seat, "userId": requester, "username": requester},
            )
            logger.info("Draw offered room_id=%s user_id=%s seat=%s", room_id, requester, seat)
            return self.game_state(saved)

    async def accept_draw(self, requester: str, room_id: str) -> GameState:
        async with self._exclusive(room_id) as room:
            game = room.game
            self._require_active(game)
            seat = self._require_seat(game, requester)
            if game.pending_draw_offer != other_color(seat):
                raise NoPendingOfferError("No draw offer from your opponent is pending.")
            return await self._finish_by_agreement(room, requester)

    async def _finish_by_agreement(self, room: RoomState, requester: str) -> GameState:
        updated = room.game.model_copy(deep=True)
        updated.status = "finished"
        updated.winner = "draw"
        updated.pending_draw_offer = None
        updated.updated_at = utcnow()
        saved = await self._commit(room, updated)

        state = self.game_state(saved)
        self.broadcaster.broadcast(room.room_id, events.GAME_STATE, state.model_dump(mode="json"))
        logger.info("Draw agreed room_id=%s accepted_by=%s", room.room_id, requester)
        await self._announce(room, "Draw agreed.")
        return state

    async def decline_draw(self, requester: str, room_id: str) -> GameState:
        async with self._exclusive(room_id) as room:
            game = room.game
            self._require_active(game)
            seat = self._require_seat(game, requester)
            if game.pending_draw_offer != other_color(seat):
                raise NoPendingOfferError("No draw offer from your opponent is pending.")

            updated = game.model_copy(deep=True)
            updated.pending_draw_offer = None
            updated.updated_at = utcnow()
            saved = await self._commit(room, updated)
            self.broadcaster.broadcast(
                room_id,
                events.DRAW_OFFER_DECLINED,
                {"color": seat, "userId": requester, "username": requester},
            )
            logger.info("Draw declined room_id=%s user_id=%s", room_id, requester)
            return self.game_state(saved)

    async def chat(self, sender: str, room_id: str, body: str) -> ChatEvent:
        text = body.strip() if isinstance(body, str) else ""
        if not sender:
            raise errors.ValidationError("A user id is required.")
        if not text:
            raise errors.ValidationError("Chat message must not be empty.")

        await self._require_room_exists(room_id)
        room = self._room(room_id)
        room.inflight += 1
        try:
            async with room.chat_lock:
                event = ChatEvent(room_id=room_id, author=sender, kind="chat", body=text)
                stored = await asyncio.to_thread(self.store.append_chat, event)
                self.broadcaster.broadcast(room_id, events.CHAT_MESSAGE, stored.model_dump(mode="json"))
        finally:
            room.inflight -= 1
            self._maybe_evict(room)
        return stored

    # -- socket event boundary --

    async def handle(self, connection: Connection, raw: Any) -> None:
        """Dispatch one inbound frame. Failures go back to this connection only."""
        try:
            frame = ClientFrame.model_validate(raw)
            handler = self._handlers.get(frame.event)
            if handler is None:
                raise errors.ValidationError(f"Unknown event: {frame.event}")
            await handler(connection, frame.data)
        except PydanticValidationError as exc:
            self._reject(connection, errors.ValidationError(f"Invalid payload: {exc.error_count()} error(s)."))
        except GameError as exc:
            self._reject(connection, exc)
        except Exception as exc:
            logger.exception("Unhandled error for connection=%s", connection.connection_id)
            self.broadcaster.send_error(connection, exc)

    def _reject(self, connection: Connection, exc: GameError) -> None:
        binding = self.registry.binding_for(connection)
        logger.warning(
            "Rejected action connection=%s room_id=%s code=%s message=%s",
            connection.connection_id,
            binding.room_id if binding else None,
            exc.code,
            exc.message,
        )
        self.broadcaster.send_error(connection, exc)

    def _resolve(self, connection: Connection, payload: RoomPayload) -> Binding:
        binding = self.registry.binding_for(connection)
        if binding is None:
            raise errors.ValidationError("Subscribe to a room before sending room events.")
        if payload.room_id and payload.room_id != binding.room_id:
            raise errors.AuthorizationError("This connection is subscribed to a different room.")
        if payload.user_id and payload.user_id != binding.user_id:
            raise errors.AuthorizationError("User id does not match this connection.")
        return binding

    async def _on_subscribe(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = SubscribePayload.model_validate(data)
        await self.subscribe(connection, payload.room_id, payload.user_id)

    async def _on_join(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = JoinPayload.model_validate(data)
        binding = self._resolve(connection, payload)
        await self.join_game(binding.user_id, binding.room_id, payload.password)

    async def _on_submit_move(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = SubmitMovePayload.model_validate(data)
        binding = self._resolve(connection, payload)
        await self.submit_move(binding.user_id, binding.room_id, payload.move)

    async def _on_resign(self, connection: Connection, data: dict[str, Any]) -> None:
        binding = self._resolve(connection, RoomPayload.model_validate(data))
        await self.resign(binding.user_id, binding.room_id)

    async def _on_offer_draw(self, connection: Connection, data: dict[str, Any]) -> None:
        binding = self._resolve(connection, RoomPayload.model_validate(data))
        await self.offer_draw(binding.user_id, binding.room_id)

    async def _on_accept_draw(self, connection: Connection, data: dict[str, Any]) -> None:
        binding = self._resolve(connection, RoomPayload.model_validate(data))
        await self.accept_draw(binding.user_id, binding.room_id)

    async def _on_decline_draw(self, connection: Connection, data: dict[str, Any]) -> None:
        binding = self._resolve(connection, RoomPayload.model_validate(data))
        await self.decline_draw(binding.user_id, binding.room_id)

    async def _on_request_ai_move(self, connection: Connection, data: dict[str, Any]) -> None:
        binding = self._resolve(connection, RoomPayload.model_validate(data))
        await self.request_ai_move(binding.user_id, binding.room_id)

    async def _on_chat(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = ChatPayload.model_validate(data)
        binding = self._resolve(connection, payload)
        await self.chat(binding.user_id, binding.room_id, payload.body)
