from __future__ import annotations


class RehearsalError(Exception):
    """Base class for errors raised by the practice backend."""


class ValidationError(RehearsalError):
    """Malformed arguments to a store or session call."""


class NotFoundError(RehearsalError):
    """Unknown interview id for the given user, or unknown topic."""


class CapabilityError(RehearsalError):
    """Capture device unavailable or lost."""


class GenerationError(RehearsalError):
    """Question generation failed; callers recover with a fallback list."""


class PersistenceError(RehearsalError):
    """A store write failed. Surfaced to the user, never retried automatically."""


class SessionStateError(RehearsalError):
    """An operation that the session's current phase does not allow."""
