"""
Event handler contract and dispatch.
"""

from .registry import EventHandler, EventHandlerRegistry, HandlerFunc

__all__ = [
    "EventHandler",
    "EventHandlerRegistry",
    "HandlerFunc",
]
