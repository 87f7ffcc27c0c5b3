"""
Test the startup consistency guard and pluggable component loading.
"""

import pytest

from chain_watcher.core.exceptions import ConfigurationError, ConsistencyViolationError
from chain_watcher.indexer.core import ReceiptBlockProbe, check_consistency
from chain_watcher.indexer.handlers import EventHandlerRegistry
from chain_watcher.indexer.main import _resolve, load_object

from conftest import make_log, tx_hash


class FixedProbe:
    def __init__(self, block):
        self.block = block

    async def latest_side_effect_block(self):
        return self.block


async def _store_event_at(make_watcher, block):
    await make_watcher().new_event(make_log(block, 0, f"B{block}", 0), head=block)


@pytest.mark.asyncio
async def test_side_effects_ahead_of_events(store, make_watcher):
    await _store_event_at(make_watcher, 50)

    with pytest.raises(ConsistencyViolationError) as exc_info:
        await check_consistency(store, FixedProbe(51))

    assert exc_info.value.details == {"side_effect_block": 51, "latest_event_block": 50}


@pytest.mark.asyncio
async def test_side_effects_at_latest_event_block(store, make_watcher):
    await _store_event_at(make_watcher, 50)

    await check_consistency(store, FixedProbe(50))
    await check_consistency(store, FixedProbe(12))


@pytest.mark.asyncio
async def test_no_side_effects(store):
    await check_consistency(store, FixedProbe(None))


@pytest.mark.asyncio
async def test_side_effects_with_empty_event_store(store):
    with pytest.raises(ConsistencyViolationError):
        await check_consistency(store, FixedProbe(3))


@pytest.mark.asyncio
async def test_receipt_probe_resolves_block_from_receipt(chain):
    chain.receipts[tx_hash("D1")] = 77

    async def latest_donation():
        return tx_hash("D1")

    probe = ReceiptBlockProbe(chain, latest_donation)

    assert await probe.latest_side_effect_block() == 77


@pytest.mark.asyncio
async def test_receipt_probe_without_side_effects(chain):
    async def nothing():
        return None

    assert await ReceiptBlockProbe(chain, nothing).latest_side_effect_block() is None


@pytest.mark.asyncio
async def test_receipt_probe_unknown_transaction(chain):
    async def unknown():
        return tx_hash("missing")

    assert await ReceiptBlockProbe(chain, unknown).latest_side_effect_block() is None


def test_load_object():
    assert load_object("chain_watcher.indexer.handlers:EventHandlerRegistry") is EventHandlerRegistry


@pytest.mark.parametrize(
    "path",
    [
        "chain_watcher.indexer.handlers",
        "chain_watcher.no_such_module:thing",
        "chain_watcher.indexer.handlers:NoSuchThing",
    ],
)
def test_load_object_rejects_bad_paths(path):
    with pytest.raises(ConfigurationError):
        load_object(path)


def test_resolve_instantiates_classes():
    handler = _resolve("chain_watcher.indexer.handlers:EventHandlerRegistry", "handle")

    assert isinstance(handler, EventHandlerRegistry)
    assert _resolve(None, "handle") is None


def test_resolve_requires_attribute():
    with pytest.raises(ConfigurationError):
        _resolve("chain_watcher.indexer.handlers:EventHandlerRegistry", "latest_side_effect_block")


def test_resolve_rejects_non_callable_objects():
    with pytest.raises(ConfigurationError):
        _resolve("chain_watcher.core.config:settings", "handle")
