from __future__ import annotations

import atexit
import logging
import random
import shutil
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

import chess
import chess.engine

from chessrooms.chess.errors import NotAITurnError
from chessrooms.core.config import settings

logger = logging.getLogger(__name__)


class MoveGenerator(Protocol):
    """Source of moves for the AI seat. Any legal move is acceptable."""

    def choose_move(self, board: chess.Board) -> chess.Move:
        ...


class RandomMoveGenerator:
    """Uniformly random legal move."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def choose_move(self, board: chess.Board) -> chess.Move:
        legal = list(board.legal_moves)
        if not legal:
            raise NotAITurnError("No legal moves available for the AI.")
        return self._rng.choice(legal)


class _EnginePool:
    """Reusable engine processes for one binary, at most ``size`` alive at once.

    A lease that ends in any exception quits its process instead of returning it.
    """

    def __init__(self, engine_path: str, size: int) -> None:
        self.engine_path = engine_path
        self._slots = threading.BoundedSemaphore(max(1, size))
        self._lock = threading.Lock()
        self._idle: list[chess.engine.SimpleEngine] = []

    @contextmanager
    def lease(self) -> Iterator[chess.engine.SimpleEngine]:
        self._slots.acquire()
        try:
            with self._lock:
                engine = self._idle.pop() if self._idle else None
            if engine is None:
                engine = chess.engine.SimpleEngine.popen_uci(self.engine_path)
            try:
                yield engine
            except BaseException:
                _quit_quietly(engine)
                raise
            with self._lock:
                self._idle.append(engine)
        finally:
            self._slots.release()

    def drain(self) -> None:
        with self._lock:
            idle, self._idle = self._idle, []
        for engine in idle:
            _quit_quietly(engine)


def _quit_quietly(engine: chess.engine.SimpleEngine) -> None:
    try:
        engine.quit()
    except (chess.engine.EngineError, TimeoutError):
        logger.warning("Stockfish did not quit cleanly")


class StockfishMoveGenerator:
    """Best move from a pooled Stockfish process under a fixed time limit."""

    def __init__(self, engine_path: str, move_time_ms: int, max_workers: int = 2) -> None:
        self.engine_path = engine_path
        self.move_time_ms = max(move_time_ms, 10)
        self._pool = _EnginePool(engine_path, max_workers)
        atexit.register(self._pool.drain)

    def choose_move(self, board: chess.Board) -> chess.Move:
        with self._pool.lease() as engine:
            result = engine.play(board, chess.engine.Limit(time=self.move_time_ms / 1000.0))
        if result.move is None:
            raise NotAITurnError("Engine returned no move.")
        return result.move

    def close(self) -> None:
        self._pool.drain()


def resolve_stockfish_path() -> str | None:
    configured = settings.STOCKFISH_PATH.strip() if settings.STOCKFISH_PATH else ""
    if configured:
        candidate = Path(configured).expanduser()
        return str(candidate) if candidate.exists() else None
    return shutil.which("stockfish")


def build_move_generator() -> MoveGenerator:
    if settings.AI_ENGINE == "stockfish":
        path = resolve_stockfish_path()
        if path:
            logger.info("AI moves from stockfish path=%s move_time_ms=%s", path, settings.AI_MOVE_TIME_MS)
            return StockfishMoveGenerator(path, settings.AI_MOVE_TIME_MS)
        logger.warning("AI_ENGINE=stockfish but no binary was found; using random legal moves.")
    return RandomMoveGenerator()
