"""Domain exceptions.

Expected race failures (a slot claimed in the meantime, a target that
vanished) are not exceptions — processors turn them into reports.  The
classes here cover the cases that really leave the normal flow.
"""

from __future__ import annotations


class PolisError(Exception):
    """Base class for all engine errors."""


class DocumentNotFound(PolisError):
    """A document required inside a transaction does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Document not found: {path}")
        self.path = path


class TransactionConflict(PolisError):
    """An optimistic transaction kept losing against concurrent writers."""


class ActionRejected(PolisError):
    """A player action failed validation.

    The message is shown to the player as-is.
    """


class MovementRejected(ActionRejected):
    """A send or cancel order failed validation."""


class ConfigError(PolisError):
    """Static configuration is missing or malformed."""
