"""
Event model - stores ingested contract events and their processing state.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple
from enum import Enum

from sqlalchemy import (
    String, Integer, BigInteger, Text, Index, JSON, DateTime, UniqueConstraint,
    Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class EventStatus(Enum):
    """
    Event processing status.

    WAITING -> PROCESSING -> PROCESSED, or PROCESSING -> FAILED.
    WAITING and FAILED may be re-entered; PROCESSED is terminal.
    """
    WAITING = "waiting"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


# Statuses picked up by the processing drain once confirmed
UNFINISHED_STATUSES = (EventStatus.WAITING, EventStatus.PROCESSING)


def clamp_confirmations(head: int, block_number: int, required: int) -> int:
    """Confirmations of ``block_number`` at chain head ``head``, capped at ``required``."""
    return max(0, min(head - block_number, required))


class Event(BaseModel, TimestampMixin):
    """Event model for storing ingested contract events."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Chain position
    block_number: Mapped[int] = mapped_column(
        BigInteger,
        comment="Block containing the log"
    )

    block_hash: Mapped[str] = mapped_column(
        String(66),
        comment="Hash of the block containing the log"
    )

    transaction_index: Mapped[int] = mapped_column(
        Integer,
        comment="Position of the transaction within the block"
    )

    transaction_hash: Mapped[str] = mapped_column(
        String(66),
        comment="Transaction hash"
    )

    log_index: Mapped[int] = mapped_column(
        Integer,
        comment="Position of the log within the block"
    )

    # Event identification
    emitter_address: Mapped[str] = mapped_column(
        String(42),
        comment="Address of the emitting contract"
    )

    event_name: Mapped[str] = mapped_column(
        String(100),
        comment="Decoded event name"
    )

    signature: Mapped[str] = mapped_column(
        String(66),
        comment="Event signature topic (topic0)"
    )

    # Event data
    decoded_args: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        default=dict,
        comment="Decoded event arguments"
    )

    raw_log: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        comment="Raw log as returned by the node"
    )

    topics: Mapped[List[str]] = mapped_column(
        JSON,
        default=list,
        comment="Ordered log topics"
    )

    # Processing state
    status: Mapped[EventStatus] = mapped_column(
        SQLEnum(EventStatus),
        default=EventStatus.WAITING,
        comment="Processing status"
    )

    confirmations: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Blocks mined on top of the event's block, capped at the requirement"
    )

    processing_error: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Error message if processing failed"
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        comment="When the event was processed"
    )

    __table_args__ = (
        UniqueConstraint(
            "block_number", "log_index", "transaction_hash",
            name="uq_event_natural_key"
        ),
        Index(
            "idx_event_canonical_order",
            "block_number", "transaction_index", "transaction_hash", "log_index"
        ),
        Index("idx_event_status_confirmations", "status", "confirmations"),
        Index("idx_event_name", "event_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<Event(id={self.id}, name={self.event_name}, block={self.block_number}, "
            f"tx={self.transaction_hash[:10]}..., log_index={self.log_index})>"
        )

    @property
    def natural_key(self) -> Tuple[int, int, str]:
        """Unique identity of the log across any number of fetches."""
        return (self.block_number, self.log_index, self.transaction_hash)

    @property
    def canonical_key(self) -> Tuple[int, int, str, int]:
        """Sort key defining processing order."""
        return (self.block_number, self.transaction_index, self.transaction_hash, self.log_index)

    @property
    def is_final(self) -> bool:
        return self.status == EventStatus.PROCESSED

    def is_eligible(self, required_confirmations: int) -> bool:
        """Check if the drain may pick this event up."""
        return (
            self.status in UNFINISHED_STATUSES
            and self.confirmations >= required_confirmations
        )

    def can_requeue(self) -> bool:
        """Only failed events may be forced back to waiting."""
        return self.status == EventStatus.FAILED
