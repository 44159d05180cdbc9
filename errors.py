"""Exceptions raised by the tournament engine.

Every error here is recoverable: the caller is expected to show the message to
an organizer or player. Storage failures are not wrapped and propagate as-is.
"""


class TournamentError(Exception):
    """Base class for engine errors."""

    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    @property
    def kind(self):
        return type(self).__name__


class NotFound(TournamentError):
    """Category, match or player does not exist."""

    status_code = 404


class MatchNotFound(NotFound):
    pass


class NotEligible(TournamentError):
    """Player fails the category's gender, age or rating rules."""

    status_code = 403


class CapacityExceeded(TournamentError):
    status_code = 409


class DeadlinePassed(TournamentError):
    status_code = 409


class InvalidState(TournamentError):
    """The category's status does not allow the requested transition."""

    status_code = 409


class InsufficientPlayers(TournamentError):
    status_code = 422


class InsufficientQualifiers(TournamentError):
    status_code = 422


class InvalidScore(TournamentError):
    status_code = 422
