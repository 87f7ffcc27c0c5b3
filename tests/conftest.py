"""
Shared fixtures: a SQLite-backed event store, a scripted chain and a recording handler.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Set

import pytest
import pytest_asyncio

from chain_watcher.core.database import create_engine_and_sessions
from chain_watcher.core.exceptions import ChainRPCError
from chain_watcher.models import Base, Event
from chain_watcher.services.chain_client import LogFilter
from chain_watcher.services.event_store import SQLAlchemyEventStore
from chain_watcher.indexer.core import EventWatcher


EMITTER = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def tx_hash(name: str) -> str:
    """Deterministic 32-byte hash for a short transaction label."""
    return "0x" + name.encode().hex().ljust(64, "0")


def make_log(
    block_number: int,
    transaction_index: int,
    transaction: str,
    log_index: int,
    event: str = "Transfer",
    args: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """A decoded log as returned by the chain client's decode()."""
    return {
        "address": EMITTER,
        "event": event,
        "signature": "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef",
        "args": args if args is not None else {"value": block_number},
        "raw": {"blockNumber": block_number, "logIndex": log_index, "data": "0x"},
        "topics": ["0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"],
        "block_number": block_number,
        "block_hash": "0x" + f"{block_number:064x}",
        "transaction_hash": tx_hash(transaction),
        "transaction_index": transaction_index,
        "log_index": log_index,
    }


class FakeChainClient:
    """Scripted chain: a settable head and a list of already decoded logs."""

    def __init__(self, head: int = 0):
        self.head = head
        self.logs: List[Dict[str, Any]] = []
        self.fetches: List[tuple] = []
        self.height_calls = 0
        self.fail_fetches = 0
        self.fail_height = False
        self.receipts: Dict[str, int] = {}

    async def height(self) -> int:
        self.height_calls += 1
        if self.fail_height:
            raise ChainRPCError("node unavailable")
        return self.head

    async def get_logs(self, from_block: int, to_block: int, filters: Sequence[LogFilter]) -> List[Any]:
        self.fetches.append((from_block, to_block))
        if self.fail_fetches:
            self.fail_fetches -= 1
            raise ChainRPCError("eth_getLogs timed out")
        return [log for log in self.logs if from_block <= log["block_number"] <= to_block]

    def decode(self, raw_log: Any) -> Dict[str, Any]:
        return dict(raw_log)

    async def transaction_block_number(self, transaction_hash: str) -> Optional[int]:
        return self.receipts.get(transaction_hash)

    async def close(self) -> None:
        pass


class RecordingHandler:
    """Records handled events; fails for chosen transaction hashes."""

    def __init__(self, delay: float = 0):
        self.handled: List[Event] = []
        self.fail_for: Set[str] = set()
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def handled_transactions(self) -> List[str]:
        return [event.transaction_hash for event in self.handled]

    async def handle(self, event: Event) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.handled.append(event)
            if event.transaction_hash in self.fail_for:
                raise RuntimeError(f"cannot apply {event.event_name}")
        finally:
            self.in_flight -= 1


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine, session_maker = create_engine_and_sessions(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield session_maker
    await engine.dispose()


@pytest.fixture
def store(session_maker):
    return SQLAlchemyEventStore(session_maker)


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def make_watcher(chain, store, handler):
    def factory(**kwargs) -> EventWatcher:
        options = {
            "log_filters": [LogFilter(address=EMITTER)],
            "required_confirmations": 3,
            "starting_block": 0,
            "fetch_batch_size": 1000,
        }
        options.update(kwargs)
        return EventWatcher(chain, store, options.pop("event_handler", handler), **options)
    return factory
