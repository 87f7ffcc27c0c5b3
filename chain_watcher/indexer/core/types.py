"""
Core types for the event watcher.
"""

from datetime import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class WatcherStatus(Enum):
    """Status of the event watcher."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class ProcessingStats:
    """Statistics for event ingestion and processing."""
    ticks: int = 0
    fetches: int = 0
    fetch_failures: int = 0
    events_ingested: int = 0
    duplicates_suppressed: int = 0
    malformed_dropped: int = 0
    events_processed: int = 0
    events_failed: int = 0
    errors: int = 0
    last_block: Optional[int] = None
    last_head: Optional[int] = None
    start_time: Optional[datetime] = None
