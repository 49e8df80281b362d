"""slink error hierarchy.

Every error raised on purpose by slink derives from ``SlinkError`` so the
command line can report it with actionable text and a non-zero exit code.
Errors are kept small and dependency-free; they never carry secrets.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .model import FileRecord


class SlinkError(Exception):
    """Base error for every expected slink failure."""

    exit_code = 1


class ConfigError(SlinkError):
    """Configuration is missing, unreadable or invalid (fatal, no retry)."""

    exit_code = 2


class EncodingError(SlinkError):
    """Token encoding produced text outside the URL-safe alphabet."""


class NotFoundError(SlinkError):
    """A file reference does not resolve to any record."""

    def __init__(self, reference: str, message: str | None = None) -> None:
        self.reference = reference
        super().__init__(message or f'File not found: {reference}')


class AmbiguityError(SlinkError):
    """A file reference matches more than one candidate or a bad index."""

    def __init__(
        self,
        reference: str,
        reason: str,
        candidates: Sequence[tuple[int, FileRecord]] = (),
    ) -> None:
        self.reference = reference
        self.reason = reason
        self.candidates = tuple(candidates)
        super().__init__(f'{reference}: {reason}')


class TokenExhaustionError(SlinkError):
    """Every candidate token for a share collided with the file's history."""

    def __init__(self, file_uuid: str, attempts: int, hash_bytes: int) -> None:
        self.file_uuid = file_uuid
        self.attempts = attempts
        self.hash_bytes = hash_bytes
        super().__init__(
            f'could not mint a unique token for file {file_uuid} after '
            f'{attempts} attempts with hash_bytes={hash_bytes}; '
            f'increase hash_bytes in the configuration'
        )


class PersistenceError(SlinkError):
    """The record store failed or is unavailable."""


class ShareConflictError(PersistenceError):
    """Insert rejected: (file, token) already exists in the store."""

    def __init__(self, file_uuid: str, token: str) -> None:
        self.file_uuid = file_uuid
        self.token = token
        super().__init__(f'token already issued for file {file_uuid}')


class InvalidShareTransition(SlinkError, ValueError):
    """Raised for share status changes other than Active -> Removed."""

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f'invalid share transition: {from_status!r} -> {to_status!r}'
        )


class StorageError(SlinkError):
    """Copying, linking or re-owning files under the base directory failed."""
