"""Error types raised by the goal lifecycle engines and adapters."""

from typing import Optional


class VolitionError(Exception):
    """Base class for all goal lifecycle errors."""


class ValidationError(VolitionError, ValueError):
    """Malformed input, schema violation or hard-limit violation."""


class MalformedContentError(ValidationError):
    """Generated content could not be parsed or failed its schema."""


class StatePreconditionError(VolitionError):
    """The entity is in the wrong status for the requested transition."""

    def __init__(self, message: str, expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class NotFoundError(VolitionError, LookupError):
    """Record does not exist or is not owned by the caller."""


class UnauthorizedError(VolitionError):
    """No current user."""


class GenerationError(VolitionError, RuntimeError):
    """The content-generation service failed or timed out."""


class InvariantViolation(VolitionError, RuntimeError):
    """Stored data breaks a lifecycle invariant."""
