"""Error taxonomy for repository management.

Why this exists:
- Callers need to tell validation failures (unknown repository, bad locator)
  apart from I/O faults (relocation, transfer, storage)
- Per-file indexing problems are expected and must be recoverable

Every error carries an ErrorKind so callers can switch on the kind instead of
matching exception classes.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Discriminator for depot errors."""

    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    INVALID_LOCATOR = "invalid_locator"
    INVALID_SCHEDULE = "invalid_schedule"
    INVALID_STATE = "invalid_state"
    RELOCATION_FAILED = "relocation_failed"
    INDEXING_SKIPPED = "indexing_skipped"
    INDEXING_FAILED = "indexing_failed"
    TRANSFER_FAILED = "transfer_failed"
    STORAGE_FAILED = "storage_failed"

    @property
    def is_validation(self) -> bool:
        """True when the error is caused by caller input rather than I/O."""
        return self in _VALIDATION_KINDS


_VALIDATION_KINDS = frozenset(
    {
        ErrorKind.NOT_FOUND,
        ErrorKind.ALREADY_EXISTS,
        ErrorKind.INVALID_LOCATOR,
        ErrorKind.INVALID_SCHEDULE,
        ErrorKind.INVALID_STATE,
    }
)


class DepotError(Exception):
    """Base exception for depot errors."""

    kind: ErrorKind = ErrorKind.STORAGE_FAILED

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


class RepositoryNotFoundError(DepotError):
    """Raised when a name references a repository that does not exist."""

    kind = ErrorKind.NOT_FOUND


class RepositoryExistsError(DepotError):
    """Raised when creating a repository with a name already in use."""

    kind = ErrorKind.ALREADY_EXISTS


class InvalidLocatorError(DepotError):
    """Raised for malformed artifact locators or unsafe artifact paths."""

    kind = ErrorKind.INVALID_LOCATOR


class InvalidScheduleError(DepotError):
    """Raised for malformed scheduling specifications."""

    kind = ErrorKind.INVALID_SCHEDULE


class RepositoryStateError(DepotError):
    """Raised when a repository is not in a state that allows the operation."""

    kind = ErrorKind.INVALID_STATE


class RelocationError(DepotError):
    """Raised when a storage tree cannot be moved to its new location."""

    kind = ErrorKind.RELOCATION_FAILED


class SkipReason(str, Enum):
    """Why a candidate file was not indexed."""

    NOT_AN_ARTIFACT = "not_an_artifact"
    NOT_A_BUNDLE = "not_a_bundle"
    INVALID_METADATA = "invalid_metadata"
    UNREADABLE = "unreadable"


class IndexingSkipped(DepotError):
    """Raised when a single candidate file cannot be indexed."""

    kind = ErrorKind.INDEXING_SKIPPED

    def __init__(
        self,
        message: str,
        reason: SkipReason = SkipReason.NOT_AN_ARTIFACT,
        original_error: Optional[Exception] = None,
    ):
        self.reason = reason
        super().__init__(message, original_error)


class IndexingError(DepotError):
    """Raised when a descriptor update must be aborted."""

    kind = ErrorKind.INDEXING_FAILED


class TransferError(DepotError):
    """Raised when fetching, installing or deploying an artifact fails."""

    kind = ErrorKind.TRANSFER_FAILED


class StorageError(DepotError):
    """Raised when the repository store cannot be read or written."""

    kind = ErrorKind.STORAGE_FAILED
