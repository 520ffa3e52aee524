"""Row store error taxonomy.

Callers branch on the class, never on driver messages:

* ``UniqueViolation``: the write collided with a unique key. Never retried.
* ``ConstraintViolation``: any other integrity failure. Never retried.
* ``TransportError``: the store could not be reached or did not answer in
  time. Reads may be retried; the HTTP boundary maps it to 503.
"""

from __future__ import annotations


class RowStoreError(Exception):
    """Base class for row store failures."""


class ConstraintViolation(RowStoreError):
    """A write violated an integrity constraint."""

    def __init__(self, message: str, constraint: str | None = None) -> None:
        super().__init__(message)
        self.constraint = constraint


class UniqueViolation(ConstraintViolation):
    """A write collided with an existing unique key."""

    def touches(self, *names: str) -> bool:
        """True if the violated constraint or its message mentions any of ``names``."""
        haystack = f"{self.constraint or ''} {self}".lower()
        return any(name.lower() in haystack for name in names)


class TransportError(RowStoreError):
    """The store was unreachable, reset the connection, or timed out."""
