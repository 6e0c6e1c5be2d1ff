"""Exception taxonomy for the position watcher."""
from __future__ import annotations


class PositionWatchError(Exception):
    """Base class for all position-watch errors."""


class ConfigurationError(PositionWatchError, ValueError):
    """Invalid configuration. Fatal at startup."""


class ExtractionError(PositionWatchError):
    """A single extraction attempt did not produce a usable record list."""


class ExtractionTimeout(ExtractionError):
    """Navigation or selector wait exceeded the attempt's time budget."""


class ExtractionFailure(ExtractionError):
    """Navigation or page-structure error, distinct from a legitimate empty page."""


class ParseFailure(PositionWatchError):
    """A numeric field could not be parsed."""


class DeliveryFailure(PositionWatchError):
    """Delivery to one notification destination failed."""


class PersistenceFailure(PositionWatchError):
    """The state file could not be written."""
