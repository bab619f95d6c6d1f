from __future__ import annotations


class GameError(Exception):
    """Base class for rejected room actions.

    ``code`` is the stable identifier sent to clients in ``error`` events and
    ``status_code`` is used when the same failure crosses the HTTP boundary.
    """

    code = "game_error"
    status_code = 400
    default_message = "Action rejected."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(GameError):
    code = "validation_error"
    status_code = 422
    default_message = "Malformed request."


class NotFoundError(GameError):
    code = "not_found"
    status_code = 404
    default_message = "Game not found."


class AuthorizationError(GameError):
    code = "not_authorized"
    status_code = 403
    default_message = "Not authorized for this room."


class ConflictError(GameError):
    code = "conflict"
    status_code = 409
    default_message = "Game is full."


class InvalidStateError(GameError):
    code = "invalid_state"
    status_code = 409
    default_message = "Action is not valid in the current game state."


class GameFinishedError(InvalidStateError):
    code = "game_finished"
    default_message = "Game is already finished."


class NotYourTurnError(GameError):
    code = "not_your_turn"
    status_code = 409
    default_message = "Not your turn."


class NotParticipantError(NotYourTurnError):
    code = "not_participant"
    status_code = 403
    default_message = "You are not seated in this game."


class IllegalMoveError(GameError):
    code = "illegal_move"
    status_code = 422
    default_message = "Invalid move."


class NoPendingOfferError(GameError):
    code = "no_pending_offer"
    status_code = 409
    default_message = "No draw offer is pending."


class NotAITurnError(GameError):
    code = "not_ai_turn"
    status_code = 409
    default_message = "AI move not available for this game."


class StorageError(GameError):
    code = "storage_error"
    status_code = 503
    default_message = "Game storage is unavailable."
