"""Exception hierarchy for the association finder."""

from typing import Optional


class AssociationFinderError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(AssociationFinderError, ValueError):
    """Raised when finder configuration is invalid."""


class TransportError(AssociationFinderError):
    """A single request failed before producing a response.

    Only errors flagged ``rate_limited`` are retried; everything else makes
    the probe classify as absent.
    """

    def __init__(self, message: str, address: Optional[str] = None, rate_limited: bool = False):
        super().__init__(message)
        self.address = address
        self.rate_limited = rate_limited


class StorageError(AssociationFinderError):
    """Reading or writing persisted state failed."""


class FormatMismatchError(StorageError):
    """A persisted snapshot does not match the expected format version or shape."""


class PeerListError(AssociationFinderError):
    """The peer list could not be obtained; aborts the whole scan request."""
