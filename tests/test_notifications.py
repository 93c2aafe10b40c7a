"""
Tests for counterparty notifiers.
"""
import pytest
import requests

from splitsafe_sdk.exceptions import NotificationError
from splitsafe_sdk.notifications import (
    HttpNotifier,
    NotificationAction,
    NotificationEvent,
    NullNotifier,
    RecordingNotifier,
)

from test_helpers.records import RECIPIENT_A, SENDER

ENDPOINT = "https://notify.example.com/events"


@pytest.fixture
def event():
    return NotificationEvent(
        action=NotificationAction.RELEASED,
        tx_id="tx-1",
        recipient=RECIPIENT_A,
        actor=SENDER,
        title="Website redesign",
    )


def test_null_notifier_drops(event):
    assert NullNotifier().notify(event) is None


def test_recording_notifier(event):
    notifier = RecordingNotifier()
    notifier.notify(event)
    assert notifier.events == [event]


def test_http_notifier_posts_json(event, requests_mock):
    requests_mock.post(ENDPOINT, status_code=202)

    HttpNotifier(ENDPOINT, api_key="secret").notify(event)

    assert requests_mock.last_request.json() == {
        "action": "released",
        "tx_id": "tx-1",
        "recipient": RECIPIENT_A,
        "actor": SENDER,
        "title": "Website redesign",
        "message": "",
    }
    assert requests_mock.last_request.headers["Authorization"] == "Bearer secret"


def test_http_notifier_failure(event, requests_mock):
    requests_mock.post(ENDPOINT, status_code=500)
    with pytest.raises(NotificationError, match="Failed to notify"):
        HttpNotifier(ENDPOINT).notify(event)


def test_http_notifier_connection_error(event, requests_mock):
    requests_mock.post(ENDPOINT, exc=requests.exceptions.ConnectionError)
    with pytest.raises(NotificationError):
        HttpNotifier(ENDPOINT).notify(event)


def test_http_notifier_requires_https():
    with pytest.raises(ValueError, match="https://"):
        HttpNotifier("http://notify.example.com")
    assert HttpNotifier("http://localhost:9000/events").endpoint == "http://localhost:9000/events"


def test_event_is_immutable(event):
    with pytest.raises(Exception):
        event.title = "changed"
