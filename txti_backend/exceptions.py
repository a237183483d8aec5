"""Exceptions raised by the txti session engine."""


class TxtiError(Exception):
    """Base exception for session engine errors."""

    pass


class ArchiveFormatError(TxtiError):
    """Raised when a file is not a valid .txti document."""

    pass


class UnsafePathError(TxtiError, ValueError):
    """Raised when an id or member name would escape its directory."""

    pass
