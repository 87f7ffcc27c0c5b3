"""
Core watcher components.
"""

from .types import WatcherStatus, ProcessingStats
from .consistency import SideEffectProbe, ReceiptBlockProbe, check_consistency
from .event_watcher import EventWatcher

__all__ = [
    "WatcherStatus",
    "ProcessingStats",
    "SideEffectProbe",
    "ReceiptBlockProbe",
    "check_consistency",
    "EventWatcher",
]
