from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "chessrooms"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    SQLALCHEMY_DATABASE_URI: str = "sqlite:///./chessrooms.db"

    # Subscribers receive the last N chat events on join.
    CHAT_HISTORY_LIMIT: int = 100
    GAME_LIST_LIMIT: int = 50
    CONNECTION_QUEUE_SIZE: int = 256

    AI_ENGINE: Literal["random", "stockfish"] = "random"
    AI_PLAYER_ID: str = "ai"
    AI_MOVE_TIME_MS: int = 200
    STOCKFISH_PATH: str = ""


settings = Settings()
