"""
EventWatcher: polls the chain for contract logs, records them, waits for the
required confirmation depth and hands each confirmed event to the handler
once, in canonical chain order.
"""

import asyncio
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Set

import structlog

from chain_watcher.core.config import settings
from chain_watcher.core.exceptions import (
    ChainRPCError,
    ChainWatcherException,
    DuplicateEventError,
    MalformedEventError,
)
from chain_watcher.models.event import Event, EventStatus, clamp_confirmations
from chain_watcher.services.chain_client import ChainClient, LogFilter
from chain_watcher.services.event_parser import parse_decoded_event
from chain_watcher.services.event_store import EventStore
from chain_watcher.indexer.handlers.registry import EventHandler

from .consistency import SideEffectProbe, check_consistency
from .types import WatcherStatus, ProcessingStats


logger = structlog.get_logger(__name__)


class EventWatcher:
    """
    Confirmation-gated, strictly ordered event pipeline.

    Each poll tick runs as its own task:
    - fetch logs for (last_block, head] unless a fetch is already in flight
    - recompute confirmations of waiting events from the current head
    - drain eligible events one at a time, always re-querying for the
      earliest one

    The fetch and the sweep/drain are guarded separately so confirmation
    progress and processing never wait behind a slow fetch. All state that
    matters across restarts lives in the event store.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        event_store: EventStore,
        event_handler: EventHandler,
        log_filters: Sequence[LogFilter],
        required_confirmations: Optional[int] = None,
        starting_block: Optional[int] = None,
        poll_interval_ms: Optional[int] = None,
        fetch_batch_size: Optional[int] = None,
        side_effect_probe: Optional[SideEffectProbe] = None,
    ):
        """Initialize the event watcher."""
        self.logger = logger.bind(service="event_watcher")
        self.status = WatcherStatus.STOPPED
        self.stats = ProcessingStats()

        # Collaborators
        self.chain_client = chain_client
        self.event_store = event_store
        self.event_handler = event_handler
        self.side_effect_probe = side_effect_probe
        self.log_filters = list(log_filters)

        # Configuration
        self.required_confirmations = (
            settings.required_confirmations if required_confirmations is None else required_confirmations
        )
        self.starting_block = settings.starting_block if starting_block is None else starting_block
        self.poll_interval_ms = poll_interval_ms or settings.poll_interval_ms
        self.fetch_batch_size = fetch_batch_size or settings.fetch_batch_size

        # Runtime state, rebuilt from the store by initialize()
        self.last_block = self.starting_block - 1
        self.last_head: Optional[int] = None
        self._fetch_in_flight = False
        self._sweep_lock = asyncio.Lock()
        self._processing_lock = asyncio.Lock()
        self._initialized = False

        # Control
        self._running = False
        self._poll_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()

    async def initialize(self):
        """
        Run the startup consistency check and restore ``last_block``.

        Raises:
            ConsistencyViolationError: if the domain store is ahead of the event store
        """
        self.status = WatcherStatus.STARTING
        self.logger.info("Initializing event watcher")

        try:
            if self.side_effect_probe is not None:
                await check_consistency(self.event_store, self.side_effect_probe)

            latest = await self.event_store.find_latest()
        except Exception:
            self.status = WatcherStatus.ERROR
            raise

        # Re-fetch the latest stored block: ingestion may have stopped part way through it
        if latest is not None:
            self.last_block = latest.block_number - 1
        else:
            self.last_block = self.starting_block - 1

        self.stats.last_block = self.last_block
        self.stats.start_time = datetime.now(timezone.utc)
        self._initialized = True
        self.status = WatcherStatus.STOPPED

        self.logger.info(
            "Event watcher initialized",
            last_block=self.last_block,
            required_confirmations=self.required_confirmations,
            filters=len(self.log_filters),
        )

    async def start(self, poll_interval_ms: Optional[int] = None):
        """Poll immediately, then every ``poll_interval_ms``."""
        if self.status == WatcherStatus.RUNNING:
            self.logger.warning("Event watcher already running")
            return

        if not self._initialized:
            await self.initialize()

        if poll_interval_ms:
            self.poll_interval_ms = poll_interval_ms

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        self.status = WatcherStatus.RUNNING
        self.logger.info("Event watcher started", poll_interval_ms=self.poll_interval_ms)

    async def stop(self):
        """Stop the timer and wait for running ticks to finish."""
        if self.status == WatcherStatus.STOPPED and not self._tick_tasks:
            return

        self.status = WatcherStatus.STOPPING
        self.logger.info("Stopping event watcher")
        self._running = False

        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass

        # In-flight handler calls are not cancelled
        if self._tick_tasks:
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)

        self.status = WatcherStatus.STOPPED
        self.logger.info("Event watcher stopped")

    async def _poll_loop(self):
        interval = self.poll_interval_ms / 1000
        while self._running:
            self.trigger()
            await asyncio.sleep(interval)

    def trigger(self) -> asyncio.Task:
        """
        Schedule a poll tick now.

        Intended for push notifications such as new-head subscriptions; the
        tick goes through exactly the same path as a timer tick.
        """
        task = asyncio.create_task(self._run_tick())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)
        return task

    async def _run_tick(self):
        try:
            await self.retrieve_and_process_past_events()
        except Exception as e:
            self.stats.errors += 1
            self.logger.error("Poll tick failed", error=str(e), error_type=type(e).__name__)

    async def retrieve_and_process_past_events(self):
        """One poll cycle: fetch new logs, refresh confirmations, drain."""
        self.stats.ticks += 1

        try:
            head = await self.chain_client.height()
        except ChainRPCError as e:
            self.stats.fetch_failures += 1
            self.logger.warning("Failed to read chain head", error=str(e))
            return

        self.last_head = head
        self.stats.last_head = head

        await self._fetch_new_events(head)
        await self._sweep_confirmations(head)
        await self._drain()

    # Ingestion

    def _set_last_block(self, block_number: int):
        if block_number > self.last_block:
            self.last_block = block_number
            self.stats.last_block = block_number

    async def _fetch_new_events(self, head: int):
        if self.last_block >= head or self._fetch_in_flight:
            return

        self._fetch_in_flight = True
        try:
            from_block = self.last_block + 1
            while from_block <= head:
                to_block = min(head, from_block + self.fetch_batch_size - 1)
                self.logger.info("Fetching events", from_block=from_block, to_block=to_block)
                self.stats.fetches += 1

                try:
                    raw_logs = await self.chain_client.get_logs(from_block, to_block, self.log_filters)
                    for raw_log in raw_logs:
                        await self._ingest_raw_log(raw_log, head)
                except ChainWatcherException as e:
                    # last_block stays put so the whole window is fetched again next tick
                    self.stats.fetch_failures += 1
                    self.logger.warning(
                        "Fetch failed, range will be retried",
                        from_block=from_block,
                        to_block=to_block,
                        error=str(e),
                        code=e.code,
                    )
                    return

                self._set_last_block(to_block)
                from_block = to_block + 1
        finally:
            self._fetch_in_flight = False

    async def _ingest_raw_log(self, raw_log: Any, head: int):
        try:
            decoded = self.chain_client.decode(raw_log)
        except (KeyError, TypeError, ValueError) as e:
            self.stats.malformed_dropped += 1
            self.logger.warning("Malformed event dropped", error=str(e))
            return
        await self.new_event(decoded, head)

    async def new_event(self, decoded: Mapping[str, Any], head: int) -> Optional[Event]:
        """
        Validate, deduplicate and store a decoded event.

        Returns the stored record, or None if it was dropped or already known.
        """
        try:
            parsed = parse_decoded_event(decoded)
        except MalformedEventError as e:
            self.stats.malformed_dropped += 1
            self.logger.warning(
                "Malformed event dropped",
                fields=e.details.get("fields"),
                transaction_hash=decoded.get("transaction_hash") if isinstance(decoded, Mapping) else None,
                log_index=decoded.get("log_index") if isinstance(decoded, Mapping) else None,
            )
            return None

        existing = await self.event_store.find_by_natural_key(
            parsed.block_number, parsed.log_index, parsed.transaction_hash
        )
        if existing is not None:
            self._log_duplicate(parsed.block_number, parsed.log_index, parsed.transaction_hash)
            return None

        record = Event(
            **parsed.to_record_fields(),
            status=EventStatus.WAITING,
            confirmations=clamp_confirmations(head, parsed.block_number, self.required_confirmations),
        )
        try:
            record = await self.event_store.insert(record)
        except DuplicateEventError:
            self._log_duplicate(parsed.block_number, parsed.log_index, parsed.transaction_hash)
            return None

        self.stats.events_ingested += 1
        self.logger.info(
            "Event stored",
            event_name=record.event_name,
            block_number=record.block_number,
            transaction_hash=record.transaction_hash,
            log_index=record.log_index,
            confirmations=record.confirmations,
        )
        return record

    def _log_duplicate(self, block_number: int, log_index: int, transaction_hash: str):
        self.stats.duplicates_suppressed += 1
        self.logger.debug(
            "Duplicate event suppressed",
            block_number=block_number,
            log_index=log_index,
            transaction_hash=transaction_hash,
        )

    async def add_event(self, decoded: Mapping[str, Any]) -> Optional[Event]:
        """
        Re-ingest a single decoded event through the normal ingestion path.

        Events above ``last_block`` are left to the regular fetch, which
        stores everything below them first.
        """
        block_number = decoded.get("block_number") if isinstance(decoded, Mapping) else None
        if isinstance(block_number, int) and block_number > self.last_block:
            self.logger.info(
                "Event not fetched yet, deferring to regular fetch",
                block_number=block_number,
                last_block=self.last_block,
                transaction_hash=decoded.get("transaction_hash"),
                log_index=decoded.get("log_index"),
            )
            return None

        try:
            head = await self.chain_client.height()
            self.last_head = head
        except ChainRPCError as e:
            # Confirmations are recomputed by the next sweep anyway
            head = self.last_head or 0
            self.logger.warning("Failed to read chain head for add_event", error=str(e), head=head)
        return await self.new_event(decoded, head)

    # Confirmation and processing

    async def _sweep_confirmations(self, head: int):
        if self._sweep_lock.locked():
            return
        async with self._sweep_lock:
            updated = await self.event_store.refresh_confirmations(head, self.required_confirmations)
            if updated:
                self.logger.debug("Confirmations refreshed", head=head, events=updated)

    async def _drain(self):
        if self._processing_lock.locked():
            return
        async with self._processing_lock:
            while True:
                event = await self.event_store.find_next_eligible(self.required_confirmations)
                if event is None:
                    return
                await self._process_event(event)

    async def _process_event(self, event: Event):
        log = self.logger.bind(
            event_id=event.id,
            event_name=event.event_name,
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
        )

        await self.event_store.mark_processing(event.id)
        event.status = EventStatus.PROCESSING

        try:
            await self.event_handler.handle(event)
        except Exception as e:
            error = str(e) or type(e).__name__
            await self.event_store.mark_failed(event.id, error)
            event.status = EventStatus.FAILED
            event.processing_error = error
            self.stats.events_failed += 1
            log.error("Event handler failed", error=error, error_type=type(e).__name__)
            return

        await self.event_store.mark_processed(event.id)
        event.status = EventStatus.PROCESSED
        self.stats.events_processed += 1
        log.info("Event processed")

    async def get_status(self) -> Dict[str, Any]:
        """Get current watcher status and statistics."""
        return {
            "status": self.status.value,
            "running": self._running,
            "last_block": self.last_block,
            "last_head": self.last_head,
            "fetch_in_flight": self._fetch_in_flight,
            "processing": self._processing_lock.locked(),
            "stats": asdict(self.stats),
            "uptime": (
                datetime.now(timezone.utc) - self.stats.start_time
                if self.stats.start_time else None
            ),
        }
