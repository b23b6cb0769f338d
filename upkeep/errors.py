"""Exceptions raised by the estimate services and rendered by the app."""


class UpkeepError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(UpkeepError):
    """A referenced estimate, work order or invoice does not exist."""

    status_code = 404


class StateConflict(UpkeepError):
    """The record's current status does not allow the operation."""


class ValidationError(UpkeepError):
    """A required field is missing or out of range."""
