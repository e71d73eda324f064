"""Exception types raised by the memory stores."""


class MemoriaError(Exception):
    """Base exception for memory operations."""


class NotFoundError(MemoriaError, LookupError):
    """Raised when an entity or opinion referenced by name/id does not exist."""


class AlreadyExistsError(MemoriaError):
    """Raised when creating an entity whose normalized name is already taken."""


class MalformedRecordError(MemoriaError, ValueError):
    """Raised when a persisted record cannot be parsed."""


class InvalidNameError(MemoriaError, ValueError):
    """Raised when an entity name normalizes to an empty slug."""
