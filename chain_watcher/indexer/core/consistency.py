"""
Startup check that the domain store has not run ahead of the event store.

If domain side effects reference a block later than the latest stored event,
the two stores have diverged (for example one of them was reset by hand) and
replaying events would apply side effects twice or out of order.
"""

from typing import Awaitable, Callable, Optional, Protocol

import structlog

from chain_watcher.core.exceptions import ConsistencyViolationError
from chain_watcher.services.chain_client import ChainClient
from chain_watcher.services.event_store import EventStore


logger = structlog.get_logger(__name__)


class SideEffectProbe(Protocol):
    """Reports the block of the latest domain side effect, if any."""

    async def latest_side_effect_block(self) -> Optional[int]:
        ...


class ReceiptBlockProbe:
    """
    Resolves the latest side effect's block from its transaction receipt.

    ``latest_transaction_hash`` is supplied by the host application and
    returns the transaction hash of its newest mined side-effect record.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        latest_transaction_hash: Callable[[], Awaitable[Optional[str]]],
    ):
        self.chain_client = chain_client
        self.latest_transaction_hash = latest_transaction_hash

    async def latest_side_effect_block(self) -> Optional[int]:
        tx_hash = await self.latest_transaction_hash()
        if not tx_hash:
            return None
        return await self.chain_client.transaction_block_number(tx_hash)


async def check_consistency(event_store: EventStore, probe: SideEffectProbe) -> None:
    """
    Raises:
        ConsistencyViolationError: if side effects exist beyond the latest stored event
    """
    side_effect_block = await probe.latest_side_effect_block()
    if side_effect_block is None:
        return

    latest_event = await event_store.find_latest()
    latest_event_block = latest_event.block_number if latest_event else None

    if latest_event_block is None or side_effect_block > latest_event_block:
        logger.critical(
            "Event store and domain store have diverged. Both must be cleared "
            "before re-syncing, otherwise side effects will not match the chain",
            side_effect_block=side_effect_block,
            latest_event_block=latest_event_block,
        )
        raise ConsistencyViolationError(
            "Domain side effects reference blocks beyond the latest stored event",
            details={
                "side_effect_block": side_effect_block,
                "latest_event_block": latest_event_block,
            },
        )

    logger.info(
        "Consistency check passed",
        side_effect_block=side_effect_block,
        latest_event_block=latest_event_block,
    )
