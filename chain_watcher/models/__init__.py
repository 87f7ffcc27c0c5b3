"""
Database models for the chain watcher.
"""

from .base import Base, BaseModel, TimestampMixin
from .event import Event, EventStatus, UNFINISHED_STATUSES, clamp_confirmations

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "Event",
    "EventStatus",
    "UNFINISHED_STATUSES",
    "clamp_confirmations",
]
