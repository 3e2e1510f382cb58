"""Custom exceptions for schema compilation and changeset handling."""

from __future__ import annotations


class StruktError(Exception):
    """Base exception for strukt failures."""


class ConfigurationError(StruktError):
    """Raised when a schema, field or validator definition is invalid."""


class ContractViolation(StruktError):
    """Raised when a validator step or guard breaks its calling contract."""


class UnknownFieldError(StruktError):
    """Raised when an undeclared field is touched at runtime."""


class InvalidParamsError(StruktError, TypeError):
    """Raised when params are neither a mapping nor key/value pairs."""


class DecodeError(StruktError):
    """Raised when external JSON input cannot be decoded into an entity."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message if path is None else f"{path}: {message}")
        self.path = path
        self.reason = message
