"""Domain errors raised by the orchestrator and collaborators."""


class EarnError(Exception):
    """Base class for every error the earn service raises on purpose."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidAddress(EarnError):
    pass


class InvalidAmount(EarnError):
    pass


class OutOfRange(EarnError):
    pass


class PositionNotFound(EarnError):
    status_code = 404


class NotActive(EarnError):
    status_code = 409


class InsufficientBalance(EarnError):
    status_code = 409


class CollaboratorError(EarnError):
    """A bridge, detector or pool call failed or returned a hard error."""

    status_code = 502


class InvalidTransition(EarnError):
    """A status change that is not an edge of the position lifecycle."""

    status_code = 409
