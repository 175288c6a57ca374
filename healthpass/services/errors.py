"""Exceptions raised by the health passport services."""


class PassportError(Exception):
    """Base class for every health passport error."""


class InvalidRecord(PassportError, ValueError):
    """An identity record cannot be serialized."""

    def __init__(self, field: str, reason: str = "is missing or empty"):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid identity record: '{field}' {reason}")


class InvalidSize(PassportError, ValueError):
    """Requested matrix size is even or smaller than the finder footprint."""

    def __init__(self, size):
        self.size = size
        super().__init__(f"Matrix size must be an odd integer >= 21, got {size!r}")


class PassportNotFound(PassportError, LookupError):
    def __init__(self, key):
        self.key = key
        super().__init__(f"Health passport {key!r} not found")


class PassportNumberExhausted(PassportError):
    """No unique passport number could be generated."""
