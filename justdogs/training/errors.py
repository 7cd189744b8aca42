"""Exceptions raised by the training platform."""

from __future__ import annotations


class JustDogsError(RuntimeError):
    """Base class for all platform errors."""


class AuthError(JustDogsError):
    """Raised for invalid credentials or a rejected registration."""


class AuthorizationError(JustDogsError):
    """Raised when a user action is not permitted."""


class NotFoundError(JustDogsError):
    """Raised when an operation references a record that does not exist."""


class ValidationError(JustDogsError):
    """Raised when incoming data fails validation."""


class InvalidTransitionError(ValidationError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, kind: str, current: str, target: str) -> None:
        super().__init__(f"Cannot move {kind} from '{current}' to '{target}'")
        self.kind = kind
        self.current = current
        self.target = target


class ConflictError(JustDogsError):
    """Raised when a record changed since the caller last read it."""


class TransportError(JustDogsError):
    """Raised when the storage backend cannot be reached."""
