from __future__ import annotations

import asyncio
import logging
from typing import Literal

from fastapi import APIRouter, HTTPException, Query

from chessrooms.api.deps import ControllerDep, CurrentUser, LobbyDep
from chessrooms.chess.errors import GameError
from chessrooms.chess.schemas.api import (
    ApiError,
    ApiMessage,
    ChatHistoryResponse,
    ChatMessageRequest,
    CreateGameRequest,
    GamePublic,
    GamesPublic,
    JoinGameRequest,
)
from chessrooms.chess.schemas.game import ChatEvent, GameState, GameStatus, GameType, Visibility
from chessrooms.chess.services.persistence import GameFilter
from chessrooms.core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chess", tags=["chess"])

_DEFAULT_LISTED_STATUSES: tuple[GameStatus, ...] = ("waiting", "active")


def to_http_exception(exc: GameError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={"error": exc.message, "code": exc.code},
    )


def _games_page(games: list) -> GamesPublic:
    data = [GamePublic.from_record(game) for game in games]
    return GamesPublic(data=data, count=len(data))


@router.get("/health", response_model=ApiMessage)
def health() -> ApiMessage:
    return ApiMessage(ok=True, message="ok")


@router.post(
    "/games",
    response_model=GamePublic,
    status_code=201,
    responses={
        401: {"model": ApiError, "description": "Missing caller identity."},
        422: {"model": ApiError, "description": "Invalid game options."},
        503: {"model": ApiError, "description": "Game storage unavailable."},
    },
)
async def create_game(payload: CreateGameRequest, current_user: CurrentUser, lobby: LobbyDep) -> GamePublic:
    try:
        game = await asyncio.to_thread(
            lobby.create_game,
            current_user,
            payload.game_type,
            payload.visibility,
            payload.password,
            payload.game_name,
        )
    except GameError as exc:
        raise to_http_exception(exc) from exc
    return GamePublic.from_record(game)


@router.get(
    "/games",
    response_model=GamesPublic,
    responses={503: {"model": ApiError, "description": "Game storage unavailable."}},
)
async def list_games(
    lobby: LobbyDep,
    status: list[Literal["waiting", "active", "finished"]] | None = Query(
        default=None,
        description="Statuses to include. Defaults to waiting and active games.",
    ),
    game_type: GameType | None = Query(default=None),
    visibility: Visibility | None = Query(default=None),
    limit: int = Query(default=settings.GAME_LIST_LIMIT, ge=1, le=200),
) -> GamesPublic:
    game_filter = GameFilter(
        statuses=tuple(status) if status else _DEFAULT_LISTED_STATUSES,
        game_type=game_type,
        visibility=visibility,
        limit=limit,
    )
    try:
        games = await asyncio.to_thread(lobby.list_games, game_filter)
    except GameError as exc:
        raise to_http_exception(exc) from exc
    return _games_page(games)


@router.get(
    "/user/games",
    response_model=GamesPublic,
    responses={
        401: {"model": ApiError, "description": "Missing caller identity."},
        503: {"model": ApiError, "description": "Game storage unavailable."},
    },
)
async def list_user_games(current_user: CurrentUser, lobby: LobbyDep) -> GamesPublic:
    try:
        games = await asyncio.to_thread(lobby.list_user_games, current_user)
    except GameError as exc:
        raise to_http_exception(exc) from exc
    return _games_page(games)


@router.get(
    "/games/{room_id}",
    response_model=GamePublic,
    responses={404: {"model": ApiError, "description": "Game not found."}},
)
async def get_game(room_id: str, lobby: LobbyDep) -> GamePublic:
    try:
        game = await asyncio.to_thread(lobby.load_game, room_id)
    except GameError as exc:
        raise to_http_exception(exc) from exc
    return GamePublic.from_record(game)


@router.get(
    "/games/{room_id}/state",
    response_model=GameState,
    responses={404: {"model": ApiError, "description": "Game not found."}},
)
async def get_game_state(room_id: str, controller: ControllerDep) -> GameState:
    try:
        return await controller.snapshot(room_id)
    except GameError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/games/{room_id}/join",
    response_model=GamePublic,
    responses={
        401: {"model": ApiError, "description": "Missing caller identity."},
        403: {"model": ApiError, "description": "Invalid password."},
        404: {"model": ApiError, "description": "Game not found."},
        409: {"model": ApiError, "description": "Game is full or already finished."},
        503: {"model": ApiError, "description": "Game storage unavailable."},
    },
)
async def join_game(
    room_id: str,
    current_user: CurrentUser,
    controller: ControllerDep,
    payload: JoinGameRequest | None = None,
) -> GamePublic:
    password = payload.password if payload is not None else None
    try:
        game = await controller.join_game(current_user, room_id, password)
    except GameError as exc:
        logger.warning("Join rejected room_id=%s user_id=%s code=%s", room_id, current_user, exc.code)
        raise to_http_exception(exc) from exc
    return GamePublic.from_record(game)


@router.get(
    "/games/{room_id}/messages",
    response_model=ChatHistoryResponse,
    responses={404: {"model": ApiError, "description": "Game not found."}},
)
async def get_messages(room_id: str, controller: ControllerDep) -> ChatHistoryResponse:
    try:
        messages = await controller.chat_history(room_id)
    except GameError as exc:
        raise to_http_exception(exc) from exc
    return ChatHistoryResponse(room_id=room_id, count=len(messages), messages=messages)


@router.post(
    "/games/{room_id}/messages",
    response_model=ChatEvent,
    status_code=201,
    responses={
        401: {"model": ApiError, "description": "Missing caller identity."},
        404: {"model": ApiError, "description": "Game not found."},
        503: {"model": ApiError, "description": "Game storage unavailable."},
    },
)
async def post_message(
    room_id: str,
    payload: ChatMessageRequest,
    current_user: CurrentUser,
    controller: ControllerDep,
) -> ChatEvent:
    try:
        return await controller.chat(current_user, room_id, payload.body)
    except GameError as exc:
        raise to_http_exception(exc) from exc
