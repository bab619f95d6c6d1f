from __future__ import annotations

import unittest

from chessrooms.chess.errors import (
    AuthorizationError,
    ConflictError,
    GameFinishedError,
    NotFoundError,
    ValidationError,
)
from chessrooms.chess.services.lobby import LobbyCoordinator
from tests.chess.support import MemoryGameStore


class LobbyCreateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryGameStore()
        self.lobby = LobbyCoordinator(self.store)

    def test_creator_takes_white_and_game_waits(self) -> None:
        game = self.lobby.create_game("alice")

        self.assertEqual(game.white_player, "alice")
        self.assertIsNone(game.black_player)
        self.assertEqual(game.status, "waiting")
        self.assertEqual(game.move_history, [])
        self.assertIsNotNone(self.store.load(game.room_id))

    def test_private_game_stores_password_hash(self) -> None:
        game = self.lobby.create_game("alice", visibility="private", password="knightfork")

        self.assertIsNotNone(game.password_hash)
        self.assertNotEqual(game.password_hash, "knightfork")

    def test_private_game_requires_password(self) -> None:
        with self.assertRaises(ValidationError):
            self.lobby.create_game("alice", visibility="private")

    def test_room_ids_are_unique(self) -> None:
        first = self.lobby.create_game("alice")
        second = self.lobby.create_game("alice")

        self.assertNotEqual(first.room_id, second.room_id)

    def test_load_missing_game(self) -> None:
        with self.assertRaises(NotFoundError):
            self.lobby.load_game("missing")


class LobbyJoinTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryGameStore()
        self.lobby = LobbyCoordinator(self.store)

    def test_second_player_takes_black_and_starts_game(self) -> None:
        game = self.lobby.create_game("alice")

        result = self.lobby.apply_join(game, "bob")

        self.assertTrue(result.seated)
        self.assertTrue(result.started)
        self.assertEqual(result.game.black_player, "bob")
        self.assertEqual(result.game.status, "active")
        self.assertEqual(game.status, "waiting")

    def test_rejoin_by_seated_player_is_a_no_op(self) -> None:
        game = self.lobby.create_game("alice")

        result = self.lobby.apply_join(game, "alice")

        self.assertFalse(result.seated)
        self.assertFalse(result.started)
        self.assertEqual(result.game.status, "waiting")

    def test_full_game_rejects_third_player(self) -> None:
        game = self.lobby.apply_join(self.lobby.create_game("alice"), "bob").game

        with self.assertRaises(ConflictError):
            self.lobby.apply_join(game, "carol")

    def test_finished_game_rejects_join(self) -> None:
        game = self.lobby.apply_join(self.lobby.create_game("alice"), "bob").game
        game.status = "finished"
        game.winner = "white"

        with self.assertRaises(GameFinishedError):
            self.lobby.apply_join(game, "carol")

    def test_private_game_checks_password(self) -> None:
        game = self.lobby.create_game("alice", visibility="private", password="knightfork")

        with self.assertRaises(AuthorizationError):
            self.lobby.apply_join(game, "bob", "wrong")
        with self.assertRaises(AuthorizationError):
            self.lobby.apply_join(game, "bob")

        result = self.lobby.apply_join(game, "bob", "knightfork")
        self.assertEqual(result.game.black_player, "bob")

    def test_ai_game_starts_when_creator_joins(self) -> None:
        game = self.lobby.create_game("alice", game_type="ai")

        result = self.lobby.apply_join(game, "alice")

        self.assertTrue(result.started)
        self.assertEqual(result.game.status, "active")
        self.assertIsNone(result.game.black_player)

    def test_ai_game_has_no_seat_for_second_human(self) -> None:
        game = self.lobby.create_game("alice", game_type="ai")

        with self.assertRaises(ConflictError):
            self.lobby.apply_join(game, "bob")

    def test_start_announcement_names_both_sides(self) -> None:
        game = self.lobby.apply_join(self.lobby.create_game("alice"), "bob").game

        event = self.lobby.start_announcement(game)

        self.assertEqual(event.kind, "system")
        self.assertIn("alice", event.body)
        self.assertIn("bob", event.body)


if __name__ == "__main__":
    unittest.main()
