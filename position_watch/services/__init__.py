"""Service modules"""
from .detector import ChangeDetector, ValueComparator
from .monitor import Monitor
from .state import JsonStateStore, MemoryStateStore, MonitorState
from .trigger import Trigger

__all__ = [
    "ChangeDetector",
    "ValueComparator",
    "Monitor",
    "JsonStateStore",
    "MemoryStateStore",
    "MonitorState",
    "Trigger",
]
