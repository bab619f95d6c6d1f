from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from chessrooms.core.db import build_engine
from chessrooms.main import create_app
from tests.chess.support import ScriptedMoveGenerator

SOCKET = "/api/v1/chess/ws"


def _subscribe(websocket, room_id: str, user_id: str) -> tuple[dict, dict]:
    websocket.send_json({"event": "subscribe", "data": {"roomId": room_id, "userId": user_id}})
    return websocket.receive_json(), websocket.receive_json()


class PlaySocketTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.engine = build_engine(f"sqlite:///{Path(self._tmp.name) / 'play.db'}")
        self.client = TestClient(create_app(engine=self.engine, move_generator=ScriptedMoveGenerator(["e7e5"])))
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)
        self.engine.dispose()
        self._tmp.cleanup()

    def start_game(self) -> str:
        created = self.client.post("/api/v1/chess/games", json={}, headers={"X-User-Id": "alice"})
        room_id = created.json()["room_id"]
        self.client.post(f"/api/v1/chess/games/{room_id}/join", headers={"X-User-Id": "bob"})
        return room_id

    def test_subscribe_sends_state_then_history(self) -> None:
        room_id = self.start_game()

        with self.client.websocket_connect(SOCKET) as alice:
            state, history = _subscribe(alice, room_id, "alice")

        self.assertEqual(state["event"], "game-state")
        self.assertEqual(state["data"]["status"], "active")
        self.assertEqual(state["data"]["white_player"], "alice")
        self.assertEqual(history["event"], "chat-history")
        self.assertEqual([event["kind"] for event in history["data"]], ["system"])

    def test_moves_reach_both_players_and_errors_only_the_sender(self) -> None:
        room_id = self.start_game()

        with self.client.websocket_connect(SOCKET) as alice:
            _subscribe(alice, room_id, "alice")
            with self.client.websocket_connect(SOCKET) as bob:
                _subscribe(bob, room_id, "bob")
                self.assertEqual(alice.receive_json()["event"], "player-joined")

                alice.send_json({"event": "submit-move", "data": {"move": "e2e4"}})
                alice_move = alice.receive_json()
                bob_move = bob.receive_json()

                bob.send_json({"event": "submit-move", "data": {"move": "e2e4"}})
                bob_error = bob.receive_json()

                bob.send_text("not json")
                bob_parse_error = bob.receive_json()

            departed = alice.receive_json()

        self.assertEqual(alice_move["event"], "move-made")
        self.assertEqual(alice_move["data"]["moves"], ["e2e4"])
        self.assertEqual(bob_move, alice_move)
        self.assertEqual(bob_error["event"], "error")
        self.assertEqual(bob_error["data"]["code"], "illegal_move")
        self.assertEqual(bob_parse_error["data"]["code"], "validation_error")
        self.assertEqual(departed["event"], "player-disconnected")
        self.assertEqual(departed["data"]["userId"], "bob")

    def test_room_events_before_subscribe_are_rejected(self) -> None:
        with self.client.websocket_connect(SOCKET) as websocket:
            websocket.send_json({"event": "resign", "data": {}})
            reply = websocket.receive_json()

        self.assertEqual(reply["event"], "error")
        self.assertEqual(reply["data"]["code"], "validation_error")

    def test_binary_frame_gets_error_and_socket_stays_open(self) -> None:
        room_id = self.start_game()

        with self.client.websocket_connect(SOCKET) as alice:
            alice.send_bytes(b"\x00\x01")
            reply = alice.receive_json()
            state, _ = _subscribe(alice, room_id, "alice")

        self.assertEqual(reply["event"], "error")
        self.assertEqual(reply["data"]["code"], "validation_error")
        self.assertEqual(state["event"], "game-state")

    def test_ai_game_over_socket(self) -> None:
        created = self.client.post("/api/v1/chess/games", json={"gameType": "ai"}, headers={"X-User-Id": "alice"})
        room_id = created.json()["room_id"]

        with self.client.websocket_connect(SOCKET) as alice:
            state, _ = _subscribe(alice, room_id, "alice")
            started = alice.receive_json()

            alice.send_json({"event": "submit-move", "data": {"move": "e4"}})
            human_move = alice.receive_json()
            alice.send_json({"event": "request-ai-move", "data": {"roomId": room_id}})
            ai_move = alice.receive_json()

        self.assertEqual(state["data"]["status"], "active")
        self.assertEqual(started["event"], "chat-message")
        self.assertEqual(human_move["event"], "move-made")
        self.assertEqual(ai_move["event"], "ai-move-made")
        self.assertEqual(ai_move["data"]["moves"], ["e2e4", "e7e5"])
        self.assertEqual(ai_move["data"]["history"], ["e4", "e5"])


if __name__ == "__main__":
    unittest.main()
