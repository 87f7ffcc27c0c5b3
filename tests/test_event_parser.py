"""
Test validation of decoded events.
"""

import pytest

from chain_watcher.core.exceptions import MalformedEventError
from chain_watcher.services.event_parser import parse_decoded_event, to_jsonable

from conftest import make_log, tx_hash


def test_parse_valid_event():
    parsed = parse_decoded_event(make_log(10, 0, "T1", 3, args={"amount": 5}))

    fields = parsed.to_record_fields()
    assert fields["block_number"] == 10
    assert fields["transaction_hash"] == tx_hash("T1")
    assert fields["log_index"] == 3
    assert fields["event_name"] == "Transfer"
    assert fields["decoded_args"] == {"amount": 5}


def test_hashes_are_lowercased():
    log = make_log(10, 0, "T1", 3)
    log["transaction_hash"] = "0x" + "AB" * 32

    assert parse_decoded_event(log).transaction_hash == "0x" + "ab" * 32


@pytest.mark.parametrize("missing", ["event", "signature", "args", "raw", "log_index", "transaction_hash"])
def test_missing_required_field_is_malformed(missing):
    log = make_log(10, 0, "T1", 3)
    del log[missing]

    with pytest.raises(MalformedEventError) as exc_info:
        parse_decoded_event(log)

    assert missing in exc_info.value.details["fields"]


def test_null_return_values_are_malformed():
    log = make_log(10, 0, "T1", 3)
    log["args"] = None

    with pytest.raises(MalformedEventError):
        parse_decoded_event(log)


def test_non_mapping_is_malformed():
    with pytest.raises(MalformedEventError):
        parse_decoded_event(["not", "an", "event"])


def test_to_jsonable_converts_bytes_and_nested_values():
    value = {"data": b"\x01\x02", "items": (1, b"\xff"), "nested": {"x": bytearray(b"\x00")}}

    assert to_jsonable(value) == {"data": "0x0102", "items": [1, "0xff"], "nested": {"x": "0x00"}}
