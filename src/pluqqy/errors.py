"""Pluqqy error hierarchy.

Every failure the core can report is a ``PluqqyError`` subclass. The ``kind``
attribute names the error category so callers (the CLI, a UI shell) can
decide how to surface it without ``isinstance`` ladders:

  not_found       target path missing
  already_exists  case-insensitive name clash
  invalid         name or path rejected before touching the filesystem
  malformed       unparseable YAML / frontmatter
  unresolved_ref  pipeline references a missing fragment
  io              underlying filesystem error
  cancelled       background task cancelled
"""

from __future__ import annotations


class PluqqyError(Exception):
    """Base class for all library errors."""

    kind: str = "error"

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class NotFoundError(PluqqyError):
    kind = "not_found"


class AlreadyExistsError(PluqqyError):
    kind = "already_exists"


class InvalidNameError(PluqqyError, ValueError):
    kind = "invalid"


class MalformedError(PluqqyError):
    kind = "malformed"


class UnresolvedRefError(PluqqyError):
    """Raised by compose when one or more component refs do not resolve."""

    kind = "unresolved_ref"

    def __init__(self, message: str, *, path: str | None = None, missing: list[str] | None = None) -> None:
        super().__init__(message, path=path)
        self.missing: list[str] = list(missing or [])


class StoreIOError(PluqqyError):
    """Filesystem failure, annotated with the operation that hit it."""

    kind = "io"

    def __init__(self, message: str, *, path: str | None = None, operation: str = "") -> None:
        super().__init__(message, path=path)
        self.operation = operation


class TaskCancelled(PluqqyError):
    kind = "cancelled"
