"""Domain error types raised by the synchronization engine."""

from __future__ import annotations


class SynchronizationError(RuntimeError):
    """Base class for failures that abort a tenant run."""


class DirectoryError(SynchronizationError):
    """Phase-fatal failure while reading a directory source."""


class DirectoryCommunicationError(DirectoryError):
    """Transient loss of the directory session; recovered by resuming the query."""


class DirectoryUnavailableError(DirectoryError):
    """Raised when resuming a query keeps failing."""


class MissingAttributeError(DirectoryError):
    """A row lacks its mandatory id attribute under a strict policy."""


class DuplicateEntryError(DirectoryError):
    """Two rows resolved to the same id under a strict policy."""


class UnresolvedMemberError(DirectoryError):
    """A member reference could not be resolved under a strict policy."""


class InvalidNameError(ValueError):
    """A directory identifier is not a structurally valid distinguished name."""


class LockAcquisitionError(SynchronizationError):
    """The tenant lock is held elsewhere."""


class LockLostError(SynchronizationError):
    """The tenant lock could not be renewed while the run was active."""


class UnknownSourceError(LookupError):
    """No directory source is registered under the requested id."""
