"""
Main entry point for the watcher service.
"""

import asyncio
import importlib
import signal
import sys
from typing import Any, Optional

import structlog

from chain_watcher.core.config import settings
from chain_watcher.core.database import init_database, close_database
from chain_watcher.core.exceptions import ConfigurationError, ConsistencyViolationError
from chain_watcher.core.logging import setup_logging
from chain_watcher.services.chain_client import Web3ChainClient
from chain_watcher.services.event_store import SQLAlchemyEventStore
from chain_watcher.indexer.core import EventWatcher, SideEffectProbe
from chain_watcher.indexer.handlers import EventHandler, EventHandlerRegistry

logger = structlog.get_logger(__name__)


def load_object(path: str) -> Any:
    """Import ``package.module:attribute``."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Expected 'module:attribute', got {path!r}")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attribute)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load {path!r}: {e}")


def _resolve(path: Optional[str], required_attr: str) -> Optional[Any]:
    """Load an instance, or call a factory, that exposes ``required_attr``."""
    if not path:
        return None
    obj = load_object(path)
    if not hasattr(obj, required_attr) or isinstance(obj, type):
        if not callable(obj):
            raise ConfigurationError(f"{path!r} does not provide {required_attr}()")
        obj = obj()
    if not hasattr(obj, required_attr):
        raise ConfigurationError(f"{path!r} does not provide {required_attr}()")
    return obj


class WatcherMain:
    """Watcher service coordinator."""

    def __init__(
        self,
        event_handler: Optional[EventHandler] = None,
        side_effect_probe: Optional[SideEffectProbe] = None,
    ):
        self.event_handler = event_handler
        self.side_effect_probe = side_effect_probe
        self.chain_client: Optional[Web3ChainClient] = None
        self.watcher: Optional[EventWatcher] = None
        self._stop_event = asyncio.Event()

    async def initialize(self):
        """Initialize database, chain client and watcher, then run the startup check."""
        logger.info("Initializing watcher service", environment=settings.environment)

        contracts = settings.get_watched_contracts()
        if not contracts:
            raise ConfigurationError("No contracts configured to watch")

        session_maker = await init_database()
        self.chain_client = Web3ChainClient(contracts)

        event_handler = self.event_handler or _resolve(settings.event_handler, "handle")
        if event_handler is None:
            logger.warning("No event handler configured, confirmed events are only marked processed")
            event_handler = EventHandlerRegistry()

        side_effect_probe = self.side_effect_probe or _resolve(
            settings.side_effect_probe, "latest_side_effect_block"
        )

        self.watcher = EventWatcher(
            chain_client=self.chain_client,
            event_store=SQLAlchemyEventStore(session_maker),
            event_handler=event_handler,
            log_filters=self.chain_client.log_filters,
            side_effect_probe=side_effect_probe,
        )
        await self.watcher.initialize()

        logger.info("Watcher service initialized", contracts=[c.name for c in contracts])

    async def start(self):
        """Start polling and block until stop() is requested."""
        await self.watcher.start(settings.poll_interval_ms)
        await self._stop_event.wait()

    def request_stop(self):
        self._stop_event.set()

    async def stop(self):
        """Stop the watcher and release connections."""
        logger.info("Stopping watcher service")

        if self.watcher:
            await self.watcher.stop()
        if self.chain_client:
            await self.chain_client.close()
        await close_database()

        logger.info("Watcher service stopped")


async def run(
    event_handler: Optional[EventHandler] = None,
    side_effect_probe: Optional[SideEffectProbe] = None,
) -> int:
    """Run the watcher service until SIGINT/SIGTERM. Returns the exit code."""
    service = WatcherMain(event_handler, side_effect_probe)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, service.request_stop)

    try:
        await service.initialize()
        await service.start()
    except ConsistencyViolationError as e:
        logger.critical("Refusing to start", error=e.message, details=e.details)
        return 1
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=e.message)
        return 2
    finally:
        await service.stop()
    return 0


def main():
    """Console script entry point."""
    setup_logging()
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
