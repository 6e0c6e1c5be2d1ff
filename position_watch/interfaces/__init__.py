"""Protocol interfaces for the position watcher."""
from .extractor import Extractor
from .notifier import Notifier
from .state_store import StateStore

__all__ = ["Extractor", "Notifier", "StateStore"]
