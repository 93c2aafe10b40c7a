"""
Tests for read-only transaction aggregates.
"""
from decimal import Decimal

import pytest

from splitsafe_sdk import aggregates
from splitsafe_sdk.aggregates import Share
from splitsafe_sdk.normalizer import normalize

from test_helpers.records import (
    NOW,
    RECIPIENT_A,
    RECIPIENT_B,
    RECIPIENT_C,
    SENDER,
    STRANGER,
    basic_record,
    byte_carrier,
    milestone,
    milestone_record,
    milestone_recipient,
    release_payment,
    to_entry,
)


@pytest.fixture
def basic():
    return normalize(basic_record(
        amount=150_000_000,
        recipients=[
            to_entry(RECIPIENT_A, amount=100_000_000, percentage=67, status="approved", approved_at=NOW),
            to_entry(RECIPIENT_B, amount=50_000_000, percentage=33),
        ],
    ))


def test_total_allocated_uses_transaction_amount(basic):
    assert aggregates.total_allocated(basic) == Decimal("1.5")


def test_total_allocated_custom_unit(basic):
    assert aggregates.total_allocated(basic, unit=10 ** 6) == Decimal(150)


def test_to_display_keeps_precision():
    assert aggregates.to_display(2 ** 64 + 1) == Decimal("184467440737.09551617")


def test_user_share(basic):
    assert aggregates.user_share(basic, RECIPIENT_A) == Share(amount=Decimal(1), percentage=67)
    assert aggregates.user_share(basic, byte_carrier(RECIPIENT_B)) == Share(amount=Decimal("0.5"), percentage=33)
    assert aggregates.user_share(basic, STRANGER) == Share()


def test_approval_progress(basic):
    assert aggregates.approval_progress(basic) == (1, 2)


def test_recipient_counts(basic):
    assert aggregates.unique_recipient_count(basic) == 2

    tx = normalize(milestone_record(milestones=[
        milestone([milestone_recipient(RECIPIENT_A), milestone_recipient(RECIPIENT_B)]),
        milestone([milestone_recipient(RECIPIENT_B), milestone_recipient(RECIPIENT_C)], milestone_id="m-2"),
    ]))
    assert aggregates.unique_recipient_count(tx) == 3


def test_released_total():
    payments = [
        release_payment(1, released_at=NOW, total=5),
        release_payment(2, released_at=NOW, total=7),
        release_payment(3, total=11),
    ]
    tx = normalize(milestone_record(milestones=[milestone([milestone_recipient(RECIPIENT_A)], payments=payments)]))
    assert aggregates.released_total(tx) == 12
    assert aggregates.released_total(normalize(basic_record())) == 0


def test_transaction_category(basic):
    assert aggregates.transaction_category(basic, SENDER) == "sent"
    assert aggregates.transaction_category(basic, RECIPIENT_A) == "received"


@pytest.mark.parametrize("value, expected", [
    ("", ""),
    ("short", "short"),
    ("abcdef0123456", "abcdef0123456"),
    ("abcdef01234567890", "abcdef...7890"),
])
def test_truncate_hash(value, expected):
    assert aggregates.truncate_hash(value) == expected


@pytest.mark.parametrize("amount, places, expected", [
    (150_000_000, 8, "1.50000000"),
    (1, 8, "0.00000001"),
    (0, 2, "0.00"),
    (0, 8, "0.00000000"),
    (123, 2, "0.00"),
])
def test_format_amount(amount, places, expected):
    assert aggregates.format_amount(amount, places=places) == expected
