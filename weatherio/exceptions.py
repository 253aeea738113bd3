"""Exception hierarchy for the weatherio backend."""

from __future__ import annotations


class WeatherioError(Exception):
    """Base exception for all weatherio errors."""


class DatabaseConnectionError(WeatherioError):
    """The database is not configured or could not be reached."""


class DuplicateKeyError(WeatherioError):
    """An insert collided with a unique field."""

    def __init__(self, message: str, *, field: str = "") -> None:
        self.field = field
        super().__init__(message)


class UserExistsError(WeatherioError):
    """Registration attempted for an email that is already taken."""


class InvalidPasswordError(WeatherioError):
    """Password cannot be hashed (e.g. longer than bcrypt's 72-byte limit)."""
