"""
Tests for role detection and control resolution.
"""
import pytest
from hypothesis import given, settings, strategies as st

from splitsafe_sdk.permissions import (
    WAITING_MESSAGE,
    Controls,
    has_acted,
    has_approved,
    has_declined,
    is_pending_approval,
    is_sender,
    resolve_controls,
)
from splitsafe_sdk.normalizer import normalize

from test_helpers.records import (
    NOW,
    RECIPIENT_A,
    RECIPIENT_B,
    SENDER,
    STRANGER,
    TextAccessor,
    basic_record,
    byte_carrier,
    milestone,
    milestone_record,
    milestone_recipient,
    to_entry,
)


class TestPendingBasicEscrow:
    @pytest.fixture
    def tx(self):
        return normalize(basic_record(status="pending"))

    def test_sender_can_edit_and_cancel(self, tx):
        controls = resolve_controls(tx, SENDER)
        assert controls == Controls(edit=True, cancel=True)

    @pytest.mark.parametrize("recipient", [RECIPIENT_A, RECIPIENT_B])
    def test_recipients_can_approve_and_decline(self, tx, recipient):
        controls = resolve_controls(tx, recipient)
        assert controls.approve and controls.decline
        assert not (controls.release or controls.refund or controls.edit or controls.cancel)
        assert controls.waiting_message is None
        assert is_pending_approval(tx, recipient)

    def test_sender_identity_in_any_encoding(self, tx):
        assert is_sender(tx, byte_carrier(SENDER))
        assert is_sender(tx, TextAccessor(SENDER))
        assert is_sender(tx, f"  {SENDER}  ")


class TestConfirmedBasicEscrow:
    @pytest.fixture
    def tx(self):
        recipients = [
            to_entry(RECIPIENT_A, status="approved", approved_at=NOW),
            to_entry(RECIPIENT_B, status="approved", approved_at=NOW),
        ]
        return normalize(basic_record(status="confirmed", recipients=recipients, confirmedAt=[NOW]))

    def test_sender_can_release_and_refund(self, tx):
        assert resolve_controls(tx, SENDER) == Controls(release=True, refund=True)

    def test_recipient_waits(self, tx):
        controls = resolve_controls(tx, RECIPIENT_A)
        assert not controls.any
        assert controls.waiting_message == WAITING_MESSAGE
        assert has_approved(tx, RECIPIENT_A)
        assert not has_declined(tx, RECIPIENT_A)


def test_released_escrow_offers_sender_nothing():
    tx = normalize(basic_record(status="released", releasedAt=[NOW]))
    assert not resolve_controls(tx, SENDER).any


def test_milestone_sender_cannot_cancel_after_first_approval():
    recipients = [milestone_recipient(RECIPIENT_A, approved_at=NOW), milestone_recipient(RECIPIENT_B)]
    tx = normalize(milestone_record(milestones=[milestone(recipients)]))
    assert resolve_controls(tx, SENDER) == Controls()


def test_declined_recipient_has_acted():
    tx = normalize(basic_record(recipients=[to_entry(RECIPIENT_A, status="declined", declined_at=NOW)]))
    assert has_acted(tx, RECIPIENT_A)
    assert has_declined(tx, RECIPIENT_A)
    assert resolve_controls(tx, RECIPIENT_A).waiting_message == WAITING_MESSAGE


def test_timestamp_counts_as_acted_even_with_pending_status():
    tx = normalize(basic_record(recipients=[to_entry(RECIPIENT_A, status="pending", approved_at=NOW)]))
    assert has_acted(tx, RECIPIENT_A)
    assert not is_pending_approval(tx, RECIPIENT_A)


def test_non_participant_is_offered_approval():
    tx = normalize(basic_record())
    assert not is_sender(tx, STRANGER)
    assert not has_acted(tx, STRANGER)
    assert resolve_controls(tx, STRANGER) == Controls(approve=True, decline=True)
    assert not is_pending_approval(tx, STRANGER)


class TestLegacySenderPrefix:
    def test_disabled_by_default(self):
        tx = normalize(basic_record(tx_id="legacy-1", recipients=[]))
        assert not is_sender(tx, STRANGER)

    def test_recipient_less_record_is_sender_owned(self):
        tx = normalize(basic_record(tx_id="legacy-1", recipients=[]))
        assert is_sender(tx, STRANGER, legacy_prefixes=("legacy-",))

    def test_rule_needs_empty_recipients(self):
        tx = normalize(basic_record(tx_id="legacy-1"))
        assert not is_sender(tx, STRANGER, legacy_prefixes=("legacy-",))


def test_missing_identity():
    tx = normalize(basic_record())
    assert not is_sender(tx, None)
    assert not has_acted(tx, None)


@settings(max_examples=100, deadline=None)
@given(
    status=st.sampled_from(["pending", "confirmed", "released", "cancelled", "declined", "refund"]),
    actor=st.sampled_from([SENDER, RECIPIENT_A, RECIPIENT_B, STRANGER]),
    sender_is_recipient=st.booleans(),
    recipient_status=st.sampled_from(["pending", "approved", "declined"]),
)
def test_sender_never_offered_approval(status, actor, sender_is_recipient, recipient_status):
    recipients = [to_entry(RECIPIENT_A, status=recipient_status), to_entry(RECIPIENT_B)]
    if sender_is_recipient:
        recipients.append(to_entry(SENDER))
    tx = normalize(basic_record(status=status, recipients=recipients))

    controls = resolve_controls(tx, actor)
    assert not (is_sender(tx, actor) and (controls.approve or controls.decline))
