from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from chessrooms.core.config import settings


def build_engine(url: str | None = None) -> Engine:
    database_url = url or settings.SQLALCHEMY_DATABASE_URI
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        # Store calls run in worker threads via asyncio.to_thread.
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    # Tables are registered on SQLModel.metadata when the models module is imported.
    import chessrooms.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
