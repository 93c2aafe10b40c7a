"""
Tests for the HTTP ledger transport.
"""
from unittest.mock import MagicMock

import pytest
import requests

from splitsafe_sdk.ledger import (
    HttpLedgerTransport,
    LedgerConnectionError,
    LedgerError,
    LedgerResponseError,
    LedgerTimeoutError,
)

from test_helpers.records import RECIPIENT_A, SENDER, basic_record

LEDGER_URL = "https://ledger.example.com/api"


@pytest.fixture
def transport():
    return HttpLedgerTransport(LEDGER_URL + "/", api_key="secret-key")


class TestConstruction:
    def test_trailing_slash_stripped(self, transport):
        assert transport.ledger_url == LEDGER_URL

    def test_requires_https(self):
        with pytest.raises(ValueError, match="https://"):
            HttpLedgerTransport("http://ledger.example.com")

    @pytest.mark.parametrize("url", ["http://localhost:8000", "http://127.0.0.1:4943"])
    def test_local_http_allowed(self, url):
        assert HttpLedgerTransport(url).ledger_url == url

    def test_auth_header(self, transport):
        assert transport.headers["Authorization"] == "Bearer secret-key"
        assert "Authorization" not in HttpLedgerTransport(LEDGER_URL).headers

    def test_retry_adapter_mounted(self, transport):
        adapter = transport.session.get_adapter(LEDGER_URL)
        assert adapter.max_retries.total == 3
        assert 503 in adapter.max_retries.status_forcelist

    def test_context_manager_closes_session(self):
        session = MagicMock()
        with HttpLedgerTransport(LEDGER_URL, session=session) as transport:
            assert transport.session is session
        session.close.assert_called_once()


class TestCalls:
    def test_list_transactions(self, transport, requests_mock):
        record = basic_record()
        requests_mock.post(f"{LEDGER_URL}/getTransactionsPaginated", json={
            "ok": {"transactions": [record], "totalCount": "1", "totalPages": 1},
        })

        page = transport.list_transactions(SENDER, 2, 25)

        assert page.transactions == [record]
        assert page.total_count == 1
        assert page.total_pages == 1
        assert page.index_of("tx-1") == 0
        assert page.index_of("nope") == -1
        assert requests_mock.last_request.json() == {"principal": SENDER, "page": 2, "pageSize": 25}
        assert requests_mock.last_request.headers["Authorization"] == "Bearer secret-key"

    def test_list_rejects_non_mapping(self, transport, requests_mock):
        requests_mock.post(f"{LEDGER_URL}/getTransactionsPaginated", json={"ok": ["nope"]})
        with pytest.raises(LedgerResponseError, match="Unexpected listing payload"):
            transport.list_transactions(SENDER)

    @pytest.mark.parametrize("body, expected", [
        ([basic_record()], basic_record()),
        ([], None),
        ({"ok": [basic_record()]}, basic_record()),
    ])
    def test_get_transaction_unwraps_optional(self, transport, requests_mock, body, expected):
        requests_mock.post(f"{LEDGER_URL}/getTransaction", json=body)
        assert transport.get_transaction(SENDER, "tx-1") == expected
        assert requests_mock.last_request.json() == {"principal": SENDER, "txId": "tx-1"}

    @pytest.mark.parametrize("call, endpoint, payload", [
        (lambda t: t.release("tx-1"), "releaseBasicEscrow", {"txId": "tx-1"}),
        (lambda t: t.cancel(SENDER, "tx-1"), "cancelTransaction", {"sender": SENDER, "txId": "tx-1"}),
        (lambda t: t.refund(SENDER, "tx-1"), "refundSplit", {"sender": SENDER, "txId": "tx-1"}),
        (
            lambda t: t.approve(SENDER, "tx-1", RECIPIENT_A),
            "recipientApproveEscrow",
            {"sender": SENDER, "txId": "tx-1", "recipient": RECIPIENT_A},
        ),
        (
            lambda t: t.decline(SENDER, 3, RECIPIENT_A),
            "recipientDeclineEscrow",
            {"sender": SENDER, "txIndex": 3, "recipient": RECIPIENT_A},
        ),
        (
            lambda t: t.sign_contract("ms-1", "m-1", "r-1", RECIPIENT_A, "signed.pdf"),
            "recipientSignContract",
            {
                "txId": "ms-1",
                "milestoneId": "m-1",
                "recipientId": "r-1",
                "caller": RECIPIENT_A,
                "signedContractFile": "signed.pdf",
            },
        ),
        (
            lambda t: t.approve_signed_contract("ms-1", "m-1", "r-1", SENDER),
            "clientApprovedSignedContract",
            {"txId": "ms-1", "milestoneId": "m-1", "recipientId": "r-1", "caller": SENDER},
        ),
        (
            lambda t: t.release_milestone_payment("ms-1", 2, SENDER),
            "clientReleaseMilestonePayment",
            {"txId": "ms-1", "monthNumber": 2, "caller": SENDER},
        ),
        (
            lambda t: t.mark_as_read(RECIPIENT_A, "tx-1"),
            "markTransactionsAsRead",
            {"principal": RECIPIENT_A, "txId": "tx-1"},
        ),
    ])
    def test_mutations(self, transport, requests_mock, call, endpoint, payload):
        requests_mock.post(f"{LEDGER_URL}/{endpoint}", json={"ok": None})
        assert call(transport) is None
        assert requests_mock.last_request.json() == payload


class TestErrors:
    def test_ledger_error_variant(self, transport, requests_mock):
        requests_mock.post(f"{LEDGER_URL}/releaseBasicEscrow", json={"err": {"Unauthorized": None}})
        with pytest.raises(LedgerResponseError) as exc_info:
            transport.release("tx-1")
        assert exc_info.value.error_code == "Unauthorized"

    def test_ledger_error_text(self, transport, requests_mock):
        requests_mock.post(f"{LEDGER_URL}/releaseBasicEscrow", json={"err": "insufficient funds"})
        with pytest.raises(LedgerResponseError) as exc_info:
            transport.release("tx-1")
        assert exc_info.value.error_code == "insufficient funds"

    def test_http_status(self, transport, requests_mock):
        requests_mock.post(f"{LEDGER_URL}/releaseBasicEscrow", status_code=403, text="forbidden")
        with pytest.raises(LedgerResponseError) as exc_info:
            transport.release("tx-1")
        assert exc_info.value.error_code == "403"

    def test_invalid_json(self, transport, requests_mock):
        requests_mock.post(f"{LEDGER_URL}/releaseBasicEscrow", text="<html>oops</html>")
        with pytest.raises(LedgerResponseError, match="Invalid JSON"):
            transport.release("tx-1")

    def test_timeout(self, transport, requests_mock):
        requests_mock.post(f"{LEDGER_URL}/releaseBasicEscrow", exc=requests.exceptions.ReadTimeout)
        with pytest.raises(LedgerTimeoutError):
            transport.release("tx-1")

    def test_connection_error(self, transport, requests_mock):
        requests_mock.post(f"{LEDGER_URL}/releaseBasicEscrow", exc=requests.exceptions.ConnectionError)
        with pytest.raises(LedgerConnectionError):
            transport.release("tx-1")

    def test_other_request_error(self, transport, requests_mock):
        requests_mock.post(f"{LEDGER_URL}/releaseBasicEscrow", exc=requests.exceptions.TooManyRedirects)
        with pytest.raises(LedgerError):
            transport.release("tx-1")

    def test_errors_share_base(self):
        assert issubclass(LedgerTimeoutError, LedgerError)
        assert issubclass(LedgerConnectionError, LedgerError)
        assert issubclass(LedgerResponseError, LedgerError)
