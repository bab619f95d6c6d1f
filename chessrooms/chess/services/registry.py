from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Outbound side of one client connection."""

    connection_id: str

    def push(self, event: str, data: Any) -> bool:
        """Queue one event for delivery. Returns False if it was dropped."""
        ...


@dataclass(frozen=True)
class Binding:
    connection: Connection
    room_id: str
    user_id: str


class SessionRegistry:
    """Which connection is watching which room, and as whom.

    One binding per connection; many connections per room. Nothing here is
    persisted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bindings: dict[str, Binding] = {}
        self._rooms: dict[str, dict[str, Connection]] = {}

    def bind(self, connection: Connection, room_id: str, user_id: str) -> Binding | None:
        """Bind ``connection`` to a room, returning the binding it replaced, if any."""
        binding = Binding(connection=connection, room_id=room_id, user_id=user_id)
        with self._lock:
            previous = self._bindings.get(connection.connection_id)
            if previous is not None:
                self._detach(previous)
            self._bindings[connection.connection_id] = binding
            self._rooms.setdefault(room_id, {})[connection.connection_id] = connection
        logger.debug(
            "Bound connection=%s room_id=%s user_id=%s",
            connection.connection_id,
            room_id,
            user_id,
        )
        return previous

    def unbind(self, connection: Connection) -> Binding | None:
        with self._lock:
            binding = self._bindings.pop(connection.connection_id, None)
            if binding is not None:
                self._detach(binding)
        return binding

    def binding_for(self, connection: Connection) -> Binding | None:
        with self._lock:
            return self._bindings.get(connection.connection_id)

    def subscribers_of(self, room_id: str) -> list[Connection]:
        with self._lock:
            return list(self._rooms.get(room_id, {}).values())

    def subscriber_count(self, room_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(room_id, {}))

    def clear(self) -> None:
        with self._lock:
            self._bindings.clear()
            self._rooms.clear()

    def _detach(self, binding: Binding) -> None:
        members = self._rooms.get(binding.room_id)
        if members is None:
            return
        members.pop(binding.connection.connection_id, None)
        if not members:
            del self._rooms[binding.room_id]
