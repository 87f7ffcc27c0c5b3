"""
Event store backed by SQLAlchemy.

The store is the single source of truth for the watcher: every piece of
watcher state that matters across restarts is derived from it.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from chain_watcher.core.exceptions import DatabaseError, DuplicateEventError, NotFoundError
from chain_watcher.models.event import Event, EventStatus, UNFINISHED_STATUSES


logger = structlog.get_logger(__name__)


CANONICAL_ORDER = (
    Event.block_number.asc(),
    Event.transaction_index.asc(),
    Event.transaction_hash.asc(),
    Event.log_index.asc(),
)


class EventStore(Protocol):
    """Query / insert / patch surface the watcher depends on."""

    async def find(self, *criteria: Any, order_by: Sequence[Any] = (), limit: Optional[int] = None) -> List[Event]:
        ...

    async def find_by_natural_key(self, block_number: int, log_index: int, transaction_hash: str) -> Optional[Event]:
        ...

    async def find_latest(self) -> Optional[Event]:
        ...

    async def find_next_eligible(self, required_confirmations: int) -> Optional[Event]:
        ...

    async def insert(self, event: Event) -> Event:
        ...

    async def patch(self, event_id: int, **fields: Any) -> None:
        ...

    async def refresh_confirmations(self, head: int, required_confirmations: int) -> int:
        ...


class SQLAlchemyEventStore:
    """Event store using an async SQLAlchemy session maker."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        self.logger = logger.bind(service="event_store")

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Event store operation failed: {e}")

    # Queries

    async def find(
        self,
        *criteria: Any,
        order_by: Sequence[Any] = (),
        limit: Optional[int] = None
    ) -> List[Event]:
        """Events matching all ``criteria``, sorted by ``order_by``."""
        stmt = select(Event).where(*criteria).order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_by_natural_key(
        self,
        block_number: int,
        log_index: int,
        transaction_hash: str
    ) -> Optional[Event]:
        events = await self.find(
            Event.block_number == block_number,
            Event.log_index == log_index,
            Event.transaction_hash == transaction_hash,
            limit=1,
        )
        return events[0] if events else None

    async def find_latest(self) -> Optional[Event]:
        """Event with the highest block number."""
        events = await self.find(order_by=(Event.block_number.desc(),), limit=1)
        return events[0] if events else None

    async def find_next_eligible(self, required_confirmations: int) -> Optional[Event]:
        """Earliest unfinished event, in canonical order, with enough confirmations."""
        events = await self.find(
            Event.status.in_(UNFINISHED_STATUSES),
            Event.confirmations >= required_confirmations,
            order_by=CANONICAL_ORDER,
            limit=1,
        )
        return events[0] if events else None

    async def find_failed(self, limit: int = 100) -> List[Event]:
        return await self.find(
            Event.status == EventStatus.FAILED,
            order_by=CANONICAL_ORDER,
            limit=limit,
        )

    async def count_by_status(self) -> Dict[EventStatus, int]:
        stmt = select(Event.status, func.count(Event.id)).group_by(Event.status)
        async with self._session() as session:
            result = await session.execute(stmt)
            counts = {status: 0 for status in EventStatus}
            counts.update({status: count for status, count in result.all()})
            return counts

    # Writes

    async def insert(self, event: Event) -> Event:
        """
        Insert a new event.

        Raises:
            DuplicateEventError: if the natural key is already stored
        """
        try:
            async with self._session() as session:
                session.add(event)
                await session.flush()
                await session.refresh(event)
            return event
        except IntegrityError as e:
            raise DuplicateEventError(
                "Event already stored",
                details={
                    "block_number": event.block_number,
                    "log_index": event.log_index,
                    "transaction_hash": event.transaction_hash,
                    "error": str(e.orig),
                },
            )

    async def patch(self, event_id: int, **fields: Any) -> None:
        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            await session.execute(stmt)

    async def mark_processing(self, event_id: int) -> None:
        await self.patch(event_id, status=EventStatus.PROCESSING)

    async def mark_processed(self, event_id: int) -> None:
        await self.patch(
            event_id,
            status=EventStatus.PROCESSED,
            processing_error=None,
            processed_at=datetime.now(timezone.utc),
        )

    async def mark_failed(self, event_id: int, error: str) -> None:
        await self.patch(event_id, status=EventStatus.FAILED, processing_error=error)

    async def refresh_confirmations(self, head: int, required_confirmations: int) -> int:
        """
        Recompute confirmations of waiting, not yet confirmed events from ``head``.

        Returns the number of rows touched.
        """
        depth = head - Event.block_number
        stmt = (
            update(Event)
            .where(
                Event.status == EventStatus.WAITING,
                Event.confirmations < required_confirmations,
            )
            .values(
                confirmations=case(
                    (depth <= 0, 0),
                    (depth >= required_confirmations, required_confirmations),
                    else_=depth,
                )
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def requeue(self, block_number: int, log_index: int, transaction_hash: str) -> Event:
        """
        Force a failed event back to waiting so the drain picks it up again.

        Raises:
            NotFoundError: if no such event exists
            ValueError: if the event is not in a re-enterable state
        """
        event = await self.find_by_natural_key(block_number, log_index, transaction_hash)
        if event is None:
            raise NotFoundError(
                "Event not found",
                details={
                    "block_number": block_number,
                    "log_index": log_index,
                    "transaction_hash": transaction_hash,
                },
            )
        if event.status == EventStatus.WAITING:
            return event
        if not event.can_requeue():
            raise ValueError(f"Cannot requeue event in status {event.status.value}")

        await self.patch(event.id, status=EventStatus.WAITING, processing_error=None)
        event.status = EventStatus.WAITING
        event.processing_error = None
        self.logger.info(
            "Event requeued",
            event_id=event.id,
            transaction_hash=transaction_hash,
            log_index=log_index,
        )
        return event
