"""
Event handler contract and a registry dispatching by event name.
"""

from typing import Awaitable, Callable, Dict, Protocol

import structlog

from chain_watcher.models.event import Event


logger = structlog.get_logger(__name__)

HandlerFunc = Callable[[Event], Awaitable[None]]


class EventHandler(Protocol):
    """
    Consumes one confirmed event and produces domain side effects.

    Raising signals failure; the message is stored on the event. Handlers
    must tolerate being called more than once for the same event: a record
    interrupted while processing is retried after a restart.
    """

    async def handle(self, event: Event) -> None:
        ...


class EventHandlerRegistry:
    """Dispatches events to handlers registered per event name."""

    def __init__(self):
        self.logger = logger.bind(service="event_handlers")
        self._handlers: Dict[str, HandlerFunc] = {}

    def register(self, event_name: str, handler: HandlerFunc) -> None:
        if event_name in self._handlers:
            raise ValueError(f"Handler already registered for {event_name}")
        self._handlers[event_name] = handler
        self.logger.debug("Registered handler", event_name=event_name)

    def on(self, event_name: str) -> Callable[[HandlerFunc], HandlerFunc]:
        """Decorator form of ``register``."""
        def decorator(handler: HandlerFunc) -> HandlerFunc:
            self.register(event_name, handler)
            return handler
        return decorator

    def __contains__(self, event_name: str) -> bool:
        return event_name in self._handlers

    async def handle(self, event: Event) -> None:
        handler = self._handlers.get(event.event_name)
        if handler is None:
            self.logger.info(
                "No handler for event, skipping",
                event_name=event.event_name,
                transaction_hash=event.transaction_hash,
                log_index=event.log_index,
            )
            return
        await handler(event)
