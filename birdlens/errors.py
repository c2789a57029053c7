"""Typed failures raised by the usage ledger and the result normalizer.

Controllers translate these into HTTP responses; nothing below the API layer
knows about status codes.
"""

from __future__ import annotations


class BirdLensError(Exception):
    """Base class for domain failures."""


class NotFound(BirdLensError):
    """Referenced user or record does not exist."""


class InvalidResponseShape(BirdLensError):
    """AI response has no usable primary bird entry."""


class IdentificationFailed(BirdLensError):
    """AI collaborator reported that it could not identify a bird."""


class SchemaViolation(BirdLensError):
    """Normalized record failed schema validation."""


class LimitExceeded(BirdLensError):
    """Daily quota or sighting cap reached."""

    def __init__(self, message: str, *, current: int, limit: int) -> None:
        super().__init__(message)
        self.current = current
        self.limit = limit


__all__ = [
    "BirdLensError",
    "NotFound",
    "InvalidResponseShape",
    "IdentificationFailed",
    "SchemaViolation",
    "LimitExceeded",
]
