"""
Tests for the wire decoders.
"""
from decimal import Decimal

import pytest

from splitsafe_sdk.models import RecipientStatus, TransactionStatus
from splitsafe_sdk.wire import (
    as_list,
    field,
    to_int,
    to_optional_text,
    to_text,
    to_timestamp,
    unwrap_optional,
    unwrap_status,
)


class _Record:
    status = "pending"


@pytest.mark.parametrize("value, expected", [
    ([], None),
    ((), None),
    ([7], 7),
    (["a"], "a"),
    ([1, 2], [1, 2]),
    (None, None),
    ("x", "x"),
])
def test_unwrap_optional(value, expected):
    assert unwrap_optional(value) == expected


@pytest.mark.parametrize("tagged, expected", [
    ({"pending": None}, TransactionStatus.PENDING),
    ({"Confirmed": None}, TransactionStatus.CONFIRMED),
    ("released", TransactionStatus.RELEASED),
    (" REFUND ", TransactionStatus.REFUND),
    ([{"declined": None}], TransactionStatus.DECLINED),
    (TransactionStatus.CANCELLED, TransactionStatus.CANCELLED),
    ({"pending": None, "confirmed": None}, TransactionStatus.UNKNOWN),
    ({"exploded": None}, TransactionStatus.UNKNOWN),
    (None, TransactionStatus.UNKNOWN),
    (42, TransactionStatus.UNKNOWN),
])
def test_unwrap_status(tagged, expected):
    assert unwrap_status(tagged, TransactionStatus) is expected


def test_unwrap_status_recipient_enum():
    assert unwrap_status({"noaction": None}, RecipientStatus) is RecipientStatus.NOACTION
    assert unwrap_status({"maybe": None}, RecipientStatus) is RecipientStatus.UNKNOWN


@pytest.mark.parametrize("value, expected", [
    (5, 5),
    ("123", 123),
    (" 42 ", 42),
    ("123456789012345678901234567890", 123456789012345678901234567890),
    ("1e3", 1000),
    (b"77", 77),
    (3.9, 3),
    (float("nan"), 0),
    (float("inf"), 0),
    ("abc", 0),
    ("", 0),
    (None, 0),
    (True, 0),
    ([9], 9),
    ([], 0),
    ({"a": 1}, 0),
    (Decimal("12.7"), 12),
    (Decimal("NaN"), 0),
])
def test_to_int(value, expected):
    assert to_int(value) == expected


@pytest.mark.parametrize("value, expected", [
    ([], None),
    ([0], None),
    (0, None),
    ("0", None),
    ("", None),
    (None, None),
    (["1700000000000000000"], 1700000000000000000),
    (1700000000000000000, 1700000000000000000),
])
def test_to_timestamp(value, expected):
    assert to_timestamp(value) == expected


def test_text_helpers():
    assert to_optional_text([]) is None
    assert to_optional_text([""]) is None
    assert to_optional_text(["chat-1"]) == "chat-1"
    assert to_text(None) == ""
    assert to_text([], default="x") == "x"
    assert to_text(5) == "5"


def test_field_reads_mappings_and_attributes():
    assert field({"createdAt": 1}, "created_at", "createdAt") == 1
    assert field({}, "missing", default="d") == "d"
    assert field(_Record(), "status") == "pending"
    assert field(None, "anything") is None


def test_as_list():
    assert as_list((1, 2)) == [1, 2]
    assert as_list(None) == []
    assert as_list({"a": 1}) == []
