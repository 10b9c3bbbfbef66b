"""Exception types raised by the watcher."""

from __future__ import annotations


class GallwatchError(Exception):
    """Base class for all watcher errors."""


class ConfigurationError(GallwatchError):
    """No usable gallery id / list URL.  Fatal at startup."""


class FetchError(GallwatchError):
    """A list page, article or image could not be fetched or parsed."""


class PersistenceError(GallwatchError):
    """An image could not be written to the gallery directory."""


class ReconciliationError(GallwatchError):
    """An existing file could not be hashed or renamed during the startup scan."""
