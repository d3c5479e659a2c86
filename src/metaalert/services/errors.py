from __future__ import annotations


class MetaAlertError(Exception):
    """Base class for errors raised by the meta alert services."""


class InvalidArgumentError(MetaAlertError):
    """Raised for malformed input (empty refs, protected patch paths, bad patches)."""


class InvalidSearchError(MetaAlertError):
    """Raised when a search or lookup request cannot be executed as given."""


class InvalidStateError(MetaAlertError):
    """Raised when an operation conflicts with the meta alert's current status or membership."""


class UnsupportedOperationError(MetaAlertError):
    """Raised when a meta alert is sent down the generic document update path."""


class NotFoundError(MetaAlertError):
    """Raised when a referenced document is absent (possibly after a consistency wait)."""
