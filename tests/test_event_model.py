"""
Test the event model helpers.
"""

import pytest

from chain_watcher.models.event import Event, EventStatus, clamp_confirmations


@pytest.mark.parametrize(
    "head, expected",
    [
        (12, 2),
        (13, 3),
        (50, 3),
        (10, 0),
        (7, 0),
    ],
)
def test_clamp_confirmations(head, expected):
    assert clamp_confirmations(head, block_number=10, required=3) == expected


def test_clamp_confirmations_without_requirement():
    assert clamp_confirmations(100, block_number=10, required=0) == 0


def _event(**overrides) -> Event:
    fields = dict(
        block_number=10,
        block_hash="0x" + "ab" * 32,
        transaction_index=2,
        transaction_hash="0x" + "cd" * 32,
        log_index=5,
        emitter_address="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        event_name="Transfer",
        signature="0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef",
        decoded_args={},
        raw_log={},
        topics=[],
        status=EventStatus.WAITING,
        confirmations=0,
    )
    fields.update(overrides)
    return Event(**fields)


def test_natural_and_canonical_keys():
    event = _event()

    assert event.natural_key == (10, 5, "0x" + "cd" * 32)
    assert event.canonical_key == (10, 2, "0x" + "cd" * 32, 5)


def test_eligibility_requires_confirmations_and_unfinished_status():
    assert not _event(confirmations=2).is_eligible(3)
    assert _event(confirmations=3).is_eligible(3)
    assert _event(status=EventStatus.PROCESSING, confirmations=3).is_eligible(3)
    assert not _event(status=EventStatus.FAILED, confirmations=3).is_eligible(3)
    assert not _event(status=EventStatus.PROCESSED, confirmations=3).is_eligible(3)


def test_only_failed_events_can_be_requeued():
    assert _event(status=EventStatus.FAILED).can_requeue()
    assert not _event(status=EventStatus.PROCESSED).can_requeue()
    assert not _event(status=EventStatus.PROCESSING).can_requeue()
    assert _event(status=EventStatus.PROCESSED).is_final
