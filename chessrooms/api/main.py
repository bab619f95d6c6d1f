from fastapi import APIRouter

from chessrooms.api.routes import lobby, play

api_router = APIRouter()
api_router.include_router(lobby.router)
api_router.include_router(play.router)
