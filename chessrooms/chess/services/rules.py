from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

import chess

from chessrooms.chess.errors import IllegalMoveError, ValidationError
from chessrooms.chess.schemas.api import UCI_MOVE_PATTERN
from chessrooms.chess.schemas.events import MoveInput, MoveSpec
from chessrooms.chess.schemas.game import CapturedPieces, Color

logger = logging.getLogger(__name__)

_FIFTY_MOVE_HALFMOVES = 100


@dataclass(frozen=True)
class MoveOutcome:
    """Result of applying one legal move to a position."""

    fen: str
    uci: str
    san: str
    is_check: bool
    is_checkmate: bool
    is_stalemate: bool
    is_draw_by_rule: bool
    draw_reason: str | None = None


@dataclass(frozen=True)
class PositionView:
    """Values derived from a position and its move history, never stored."""

    fen: str
    turn: Color
    is_check: bool
    is_checkmate: bool
    is_stalemate: bool
    is_draw: bool
    draw_reason: str | None
    history: list[str] = field(default_factory=list)
    last_move: str | None = None
    captured: CapturedPieces = field(default_factory=CapturedPieces)


def _color_name(color: chess.Color) -> Color:
    return "white" if color == chess.WHITE else "black"


def _draw_reason(board: chess.Board) -> str | None:
    if board.is_stalemate():
        return "stalemate"
    if board.is_insufficient_material():
        return "insufficient_material"
    if board.halfmove_clock >= _FIFTY_MOVE_HALFMOVES:
        return "fifty_moves"
    if board.is_repetition(3):
        return "threefold_repetition"
    return None


class RulesEngine:
    """Chess legality over python-chess, addressed by FEN plus UCI move history."""

    def build_board(self, fen: str, moves: Sequence[str] = ()) -> chess.Board:
        """Rebuild a board for ``fen``.

        Replays ``moves`` from the starting position so repetition can be
        detected; if that replay does not land on ``fen`` the FEN alone is used.
        """
        if moves:
            board = chess.Board()
            try:
                for uci in moves:
                    board.push_uci(uci)
            except ValueError:
                logger.warning("Move history replay failed; using stored FEN only fen=%s", fen)
            else:
                if board.fen() == fen:
                    return board
                logger.warning("Move history does not reproduce stored FEN fen=%s", fen)
        try:
            return chess.Board(fen)
        except ValueError as exc:
            raise ValidationError(f"Invalid FEN: {exc}") from exc

    def parse_move(self, board: chess.Board, move: MoveInput) -> chess.Move:
        if isinstance(move, MoveSpec):
            return self._move_from_squares(board, move)
        if isinstance(move, dict):
            return self._move_from_squares(board, MoveSpec.model_validate(move))

        candidate = move.strip()
        if re.match(UCI_MOVE_PATTERN, candidate.lower()):
            try:
                return chess.Move.from_uci(candidate.lower())
            except ValueError as exc:
                raise IllegalMoveError(f"Invalid move: {candidate}") from exc
        try:
            return board.parse_san(candidate)
        except ValueError as exc:
            raise IllegalMoveError(f"Invalid move: {candidate}") from exc

    def legal_moves(self, fen: str, moves: Sequence[str] = ()) -> list[str]:
        board = self.build_board(fen, moves)
        return [move.uci() for move in board.legal_moves]

    def apply_move(self, fen: str, move: MoveInput, moves: Sequence[str] = ()) -> MoveOutcome:
        board = self.build_board(fen, moves)
        parsed = self.parse_move(board, move)
        if not board.is_legal(parsed):
            raise IllegalMoveError(f"Invalid move: {parsed.uci()}")

        san = board.san(parsed)
        board.push(parsed)
        is_checkmate = board.is_checkmate()
        is_stalemate = board.is_stalemate()
        draw_reason = None if is_checkmate else _draw_reason(board)
        return MoveOutcome(
            fen=board.fen(),
            uci=parsed.uci(),
            san=san,
            is_check=board.is_check(),
            is_checkmate=is_checkmate,
            is_stalemate=is_stalemate,
            is_draw_by_rule=draw_reason is not None and not is_stalemate,
            draw_reason=draw_reason,
        )

    def describe(self, fen: str, moves: Sequence[str] = ()) -> PositionView:
        board = self.build_board(fen, moves)
        replay = chess.Board()
        history: list[str] = []
        captured = CapturedPieces()
        # Only a board rebuilt from history carries a move stack.
        if moves and len(board.move_stack) == len(moves):
            for move in board.move_stack:
                taken = self._captured_piece(replay, move)
                if taken is not None:
                    bucket = captured.white if replay.turn == chess.WHITE else captured.black
                    bucket.append(taken.symbol().lower())
                history.append(replay.san(move))
                replay.push(move)

        is_checkmate = board.is_checkmate()
        draw_reason = None if is_checkmate else _draw_reason(board)
        return PositionView(
            fen=board.fen(),
            turn=_color_name(board.turn),
            is_check=board.is_check(),
            is_checkmate=is_checkmate,
            is_stalemate=board.is_stalemate(),
            is_draw=draw_reason is not None,
            draw_reason=draw_reason,
            history=history,
            last_move=moves[-1] if moves else None,
            captured=captured,
        )

    @staticmethod
    def _captured_piece(board: chess.Board, move: chess.Move) -> chess.Piece | None:
        if board.is_en_passant(move):
            return chess.Piece(chess.PAWN, not board.turn)
        return board.piece_at(move.to_square)

    @staticmethod
    def _move_from_squares(board: chess.Board, spec: MoveSpec) -> chess.Move:
        uci = f"{spec.from_square}{spec.to_square}{spec.promotion or ''}"
        try:
            move = chess.Move.from_uci(uci)
        except ValueError as exc:
            raise IllegalMoveError(f"Invalid move: {uci}") from exc
        # Board widgets often omit the promotion piece; default to a queen.
        if move.promotion is None and move not in board.legal_moves:
            queen = chess.Move(move.from_square, move.to_square, promotion=chess.QUEEN)
            if queen in board.legal_moves:
                return queen
        return move
