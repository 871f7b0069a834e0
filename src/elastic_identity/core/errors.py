"""Exception hierarchy raised by the identity store.

Every error carries the diagnostic string of the store call that produced it
(``debug``), or ``None`` when it was raised before any I/O.
"""

from __future__ import annotations


class IdentityStoreError(Exception):
    """Base class for all identity store errors."""

    def __init__(self, message: str, debug: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.debug = debug


class InvalidArgument(IdentityStoreError, ValueError):
    """A required parameter was ``None`` or empty."""


class InvalidOperation(IdentityStoreError):
    """The record is not in a state that allows the requested mutation."""


class VersionConflict(IdentityStoreError):
    """The version presented with a write does not match the stored one."""


class DuplicateDocument(VersionConflict):
    """A create-only write hit an id that already exists."""


class NotFound(IdentityStoreError):
    """The document does not exist (strict mode only)."""


class StoreError(IdentityStoreError):
    """The store rejected a call for a reason not covered elsewhere."""

    def __init__(self, message: str, debug: str | None = None, status: int | None = None) -> None:
        super().__init__(message, debug)
        self.status = status


class StoreUnavailable(StoreError):
    """The store could not be reached or is temporarily refusing requests."""


class IndexAlreadyExists(StoreError):
    """``create_index`` lost a race against another creator."""


class SetupFailure(IdentityStoreError):
    """Provisioning the backing index failed."""
