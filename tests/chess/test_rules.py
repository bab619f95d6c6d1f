from __future__ import annotations

import unittest

import chess

from chessrooms.chess.errors import IllegalMoveError, ValidationError
from chessrooms.chess.schemas.events import MoveSpec
from chessrooms.chess.services.rules import RulesEngine


def _play(engine: RulesEngine, moves: list[str]):
    fen = chess.STARTING_FEN
    history: list[str] = []
    outcome = None
    for move in moves:
        outcome = engine.apply_move(fen, move, history)
        fen = outcome.fen
        history.append(outcome.uci)
    return outcome, fen, history


class RulesEngineMoveTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = RulesEngine()

    def test_apply_uci_move_returns_next_position(self) -> None:
        outcome = self.engine.apply_move(chess.STARTING_FEN, "e2e4")

        self.assertEqual(outcome.uci, "e2e4")
        self.assertEqual(outcome.san, "e4")
        self.assertEqual(
            outcome.fen,
            "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1",
        )
        self.assertFalse(outcome.is_check)
        self.assertFalse(outcome.is_checkmate)
        self.assertIsNone(outcome.draw_reason)

    def test_apply_san_move(self) -> None:
        outcome = self.engine.apply_move(chess.STARTING_FEN, "Nf3")

        self.assertEqual(outcome.uci, "g1f3")
        self.assertEqual(outcome.san, "Nf3")

    def test_apply_square_pair_move(self) -> None:
        outcome = self.engine.apply_move(chess.STARTING_FEN, MoveSpec.model_validate({"from": "E2", "to": "e4"}))

        self.assertEqual(outcome.uci, "e2e4")

    def test_square_pair_without_promotion_promotes_to_queen(self) -> None:
        fen = "8/P7/8/8/8/8/8/k6K w - - 0 1"

        outcome = self.engine.apply_move(fen, {"from": "a7", "to": "a8"})

        self.assertEqual(outcome.uci, "a7a8q")
        self.assertEqual(outcome.san, "a8=Q+")

    def test_illegal_move_is_rejected(self) -> None:
        with self.assertRaises(IllegalMoveError):
            self.engine.apply_move(chess.STARTING_FEN, "e2e5")

    def test_unparseable_move_is_rejected(self) -> None:
        with self.assertRaises(IllegalMoveError):
            self.engine.apply_move(chess.STARTING_FEN, "castle please")

    def test_invalid_fen_is_a_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            self.engine.apply_move("not a fen", "e2e4")

    def test_legal_moves_from_start(self) -> None:
        moves = self.engine.legal_moves(chess.STARTING_FEN)

        self.assertEqual(len(moves), 20)
        self.assertIn("g1f3", moves)


class RulesEngineTerminalTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = RulesEngine()

    def test_fools_mate_is_checkmate(self) -> None:
        outcome, _, _ = _play(self.engine, ["f2f3", "e7e5", "g2g4", "d8h4"])

        self.assertTrue(outcome.is_checkmate)
        self.assertTrue(outcome.is_check)
        self.assertFalse(outcome.is_draw_by_rule)
        self.assertIsNone(outcome.draw_reason)

    def test_stalemate(self) -> None:
        outcome = self.engine.apply_move("k7/8/1Q6/8/8/8/8/7K w - - 0 1", "b6c7")

        self.assertTrue(outcome.is_stalemate)
        self.assertFalse(outcome.is_draw_by_rule)
        self.assertEqual(outcome.draw_reason, "stalemate")

    def test_insufficient_material(self) -> None:
        outcome = self.engine.apply_move("k7/8/8/8/8/8/1r6/K7 w - - 0 1", "a1b2")

        self.assertTrue(outcome.is_draw_by_rule)
        self.assertEqual(outcome.draw_reason, "insufficient_material")

    def test_fifty_move_rule(self) -> None:
        outcome = self.engine.apply_move("k7/8/8/8/8/8/8/KR6 w - - 99 80", "b1b2")

        self.assertTrue(outcome.is_draw_by_rule)
        self.assertEqual(outcome.draw_reason, "fifty_moves")

    def test_threefold_repetition_uses_move_history(self) -> None:
        shuffle = ["g1f3", "g8f6", "f3g1", "f6g8"] * 2

        outcome, _, _ = _play(self.engine, shuffle)

        self.assertTrue(outcome.is_draw_by_rule)
        self.assertEqual(outcome.draw_reason, "threefold_repetition")


class RulesEngineDescribeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = RulesEngine()

    def test_describe_rebuilds_san_history_and_captures(self) -> None:
        _, fen, history = _play(self.engine, ["e2e4", "d7d5", "e4d5"])

        view = self.engine.describe(fen, history)

        self.assertEqual(view.history, ["e4", "d5", "exd5"])
        self.assertEqual(view.captured.white, ["p"])
        self.assertEqual(view.captured.black, [])
        self.assertEqual(view.last_move, "e4d5")
        self.assertEqual(view.turn, "black")

    def test_describe_counts_en_passant_capture(self) -> None:
        _, fen, history = _play(self.engine, ["e2e4", "a7a6", "e4e5", "d7d5", "e5d6"])

        view = self.engine.describe(fen, history)

        self.assertEqual(view.captured.white, ["p"])
        self.assertEqual(view.history[-1], "exd6")

    def test_describe_falls_back_to_fen_when_history_disagrees(self) -> None:
        view = self.engine.describe(chess.STARTING_FEN, ["e2e4"])

        self.assertEqual(view.fen, chess.STARTING_FEN)
        self.assertEqual(view.history, [])
        self.assertEqual(view.turn, "white")

    def test_describe_reports_checkmate(self) -> None:
        _, fen, history = _play(self.engine, ["f2f3", "e7e5", "g2g4", "d8h4"])

        view = self.engine.describe(fen, history)

        self.assertTrue(view.is_checkmate)
        self.assertFalse(view.is_draw)


if __name__ == "__main__":
    unittest.main()
