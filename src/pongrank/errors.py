"""Domain errors raised by the rating and tournament services.

The web layer maps these onto HTTP status codes:

- ValidationError -> 400
- NotFoundError   -> 404
- ConflictError   -> 409

Anything else raised while talking to the database propagates as-is and is
reported to clients as a generic failure.
"""

from __future__ import annotations


class PongRankError(Exception):
    """Base class for all expected, user-facing failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PongRankError):
    """Input rejected before any state was changed."""


class NotFoundError(PongRankError):
    """A referenced player, match or tournament does not exist."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(PongRankError):
    """The operation violates a business precondition (e.g. wrong state)."""
