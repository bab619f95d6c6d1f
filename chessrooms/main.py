from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from chessrooms.api.main import api_router
from chessrooms.chess.services.ai import MoveGenerator, build_move_generator
from chessrooms.chess.services.broadcast import Broadcaster
from chessrooms.chess.services.controller import GameSessionController
from chessrooms.chess.services.lobby import LobbyCoordinator
from chessrooms.chess.services.persistence import SQLGameStore
from chessrooms.chess.services.registry import SessionRegistry
from chessrooms.chess.services.rules import RulesEngine
from chessrooms.core.config import settings
from chessrooms.core.db import build_engine, init_db

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("chessrooms").setLevel(settings.LOG_LEVEL.upper())


def create_app(*, engine: Engine | None = None, move_generator: MoveGenerator | None = None) -> FastAPI:
    """Build the API. ``engine`` and ``move_generator`` are injectable for tests."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        db_engine = engine if engine is not None else build_engine()
        init_db(db_engine)

        store = SQLGameStore(db_engine)
        registry = SessionRegistry()
        lobby = LobbyCoordinator(store)
        generator = move_generator if move_generator is not None else build_move_generator()
        app.state.lobby = lobby
        app.state.controller = GameSessionController(
            store=store,
            lobby=lobby,
            rules=RulesEngine(),
            registry=registry,
            broadcaster=Broadcaster(registry),
            move_generator=generator,
            chat_history_limit=settings.CHAT_HISTORY_LIMIT,
            ai_player_id=settings.AI_PLAYER_ID,
        )
        logger.info("Game service started database=%s", db_engine.url.render_as_string(hide_password=True))
        try:
            yield
        finally:
            registry.clear()
            close = getattr(generator, "close", None)
            if callable(close):
                close()
            if engine is None:
                db_engine.dispose()
            logger.info("Game service stopped")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


app = create_app()
