"""Exception classes shared by the store, the replicator and the feed API."""

from typing import List, Optional


class ArchiveError(Exception):
    """
    Base exception class for all archive-related errors.
    """
    code = "ARCHIVE_ERROR"


class TransportError(ArchiveError):
    """
    Raised when a peer request fails: connection error, timeout or non-2xx status.
    """
    code = "TRANSPORT_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(ArchiveError):
    """
    Raised when a peer response, digest or key cannot be decoded.
    """
    code = "PARSE_ERROR"


class SchemaValidationError(ArchiveError):
    """
    Raised when a document fails its JSON schema.
    """
    code = "SCHEMA_VALIDATION_ERROR"

    def __init__(self, message: str, errors: List[str]):
        super().__init__(message)
        self.errors = errors


class IntegrityError(ArchiveError):
    """
    Raised when a recomputed digest does not match the announced one.
    """
    code = "INTEGRITY_ERROR"


class AuthenticityError(ArchiveError):
    """
    Raised when a timestamp signature does not verify.
    """
    code = "AUTHENTICITY_ERROR"


class StorageError(ArchiveError):
    """
    Raised when a filesystem operation in the store fails.
    """
    code = "STORAGE_ERROR"


class NotFoundError(ArchiveError):
    """
    Raised when a requested record, timestamp or attachment is not stored.
    """
    code = "NOT_FOUND"


class MalformedPeerLineError(ArchiveError):
    """
    Raised for an unparsable line of the peer registry file.
    """
    code = "MALFORMED_PEER_LINE"

    def __init__(self, message: str, line_number: int):
        super().__init__(message)
        self.line_number = line_number
