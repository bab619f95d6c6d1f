from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from chessrooms.chess.services.controller import GameSessionController
from chessrooms.chess.services.lobby import LobbyCoordinator

_MAX_USER_ID_LENGTH = 64


def get_current_user_id(
    x_user_id: Annotated[str | None, Header(description="Caller identity.")] = None,
) -> str:
    user_id = x_user_id.strip() if isinstance(x_user_id, str) else ""
    if not user_id:
        raise HTTPException(status_code=401, detail={"error": "Missing X-User-Id header.", "code": "unauthenticated"})
    if len(user_id) > _MAX_USER_ID_LENGTH:
        raise HTTPException(status_code=422, detail={"error": "User id is too long.", "code": "validation_error"})
    return user_id


def get_controller(request: Request) -> GameSessionController:
    return request.app.state.controller


def get_lobby(request: Request) -> LobbyCoordinator:
    return request.app.state.lobby


CurrentUser = Annotated[str, Depends(get_current_user_id)]
ControllerDep = Annotated[GameSessionController, Depends(get_controller)]
LobbyDep = Annotated[LobbyCoordinator, Depends(get_lobby)]
