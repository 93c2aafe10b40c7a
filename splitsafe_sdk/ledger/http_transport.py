"""
HTTP transport for the escrow ledger.

Each ledger method is exposed by the gateway as ``POST {ledger_url}/{method}``
taking and returning JSON. Results wrapped as ``{"ok": ...}`` or
``{"err": ...}`` are unwrapped here; errors become :class:`LedgerResponseError`.
"""
import logging
import urllib.parse
from typing import Any, Dict, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..wire import to_int, unwrap_optional
from .exceptions import (
    LedgerConnectionError,
    LedgerError,
    LedgerResponseError,
    LedgerTimeoutError,
)
from .transport import LedgerTransport, Page

logger = logging.getLogger(__name__)


def _validate_url(url: str) -> str:
    """Require https for anything that is not a local development ledger."""
    parsed = urllib.parse.urlparse(url)
    host = parsed.hostname or ""
    is_local = host in ("localhost", "127.0.0.1")
    if parsed.scheme != "https" and not is_local:
        raise ValueError(f"ledger_url must use https:// for security (got: {parsed.scheme}://)")
    return url.rstrip("/")


def _error_code(err: Any) -> str:
    if isinstance(err, Mapping) and len(err) == 1:
        return str(next(iter(err)))
    return str(err)


class HttpLedgerTransport(LedgerTransport):
    """
    Ledger transport speaking JSON over HTTPS.

    Args:
        ledger_url: Base URL of the ledger gateway
        api_key: Optional bearer token sent with every call
        timeout: Per-request timeout in seconds
        retry_count: Retries for connection errors and 5xx responses
        session: Pre-configured session (mainly for tests)
    """

    def __init__(
        self,
        ledger_url: str,
        api_key: Optional[str] = None,
        timeout: int = 30,
        retry_count: int = 3,
        session: Optional[requests.Session] = None,
    ):
        self.ledger_url = _validate_url(ledger_url)
        self.timeout = timeout

        if session is None:
            session = requests.Session()
            retries = Retry(
                total=retry_count,
                backoff_factor=0.5,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["GET", "POST"],
                raise_on_status=False,
                connect=retry_count,
                read=retry_count,
                other=retry_count,
            )
            session.mount("http://", HTTPAdapter(max_retries=retries))
            session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session = session

        self.headers: Dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        """
        Invoke a ledger method and unwrap its result.

        Raises:
            LedgerTimeoutError: If the request timed out
            LedgerConnectionError: If the ledger could not be reached
            LedgerResponseError: If the ledger answered with an error
        """
        url = f"{self.ledger_url}/{method}"
        logger.debug(f"Ledger call {method}")
        try:
            response = self.session.post(url, json=payload, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.Timeout as e:
            raise LedgerTimeoutError(f"Ledger call {method} timed out: {e}") from e
        except requests.ConnectionError as e:
            raise LedgerConnectionError(f"Could not reach ledger for {method}: {e}") from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise LedgerResponseError(f"Ledger call {method} failed: {e}", error_code=str(status)) from e
        except requests.RequestException as e:
            raise LedgerError(f"Ledger call {method} failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise LedgerResponseError(f"Invalid JSON from ledger for {method}: {e}") from e

        if isinstance(body, Mapping):
            if "err" in body:
                code = _error_code(body["err"])
                raise LedgerResponseError(f"Ledger rejected {method}: {code}", error_code=code)
            if "ok" in body:
                return body["ok"]
        return body

    def list_transactions(self, actor: str, offset: int = 0, limit: int = 100) -> Page:
        result = self._call("getTransactionsPaginated", {"principal": actor, "page": offset, "pageSize": limit})
        if not isinstance(result, Mapping):
            raise LedgerResponseError(f"Unexpected listing payload: {type(result).__name__}")
        transactions = result.get("transactions") or []
        return Page(
            transactions=list(transactions),
            total_count=to_int(result.get("totalCount")),
            total_pages=to_int(result.get("totalPages")),
        )

    def get_transaction(self, actor: str, tx_id: str) -> Optional[Any]:
        return unwrap_optional(self._call("getTransaction", {"principal": actor, "txId": tx_id}))

    def release(self, tx_id: str) -> Any:
        return self._call("releaseBasicEscrow", {"txId": tx_id})

    def cancel(self, sender: str, tx_id: str) -> Any:
        return self._call("cancelTransaction", {"sender": sender, "txId": tx_id})

    def refund(self, sender: str, tx_id: str) -> Any:
        return self._call("refundSplit", {"sender": sender, "txId": tx_id})

    def approve(self, sender: str, tx_id: str, recipient: str) -> Any:
        return self._call("recipientApproveEscrow", {"sender": sender, "txId": tx_id, "recipient": recipient})

    def decline(self, sender: str, tx_index: int, recipient: str) -> Any:
        return self._call("recipientDeclineEscrow", {"sender": sender, "txIndex": tx_index, "recipient": recipient})

    def sign_contract(self, tx_id: str, milestone_id: str, recipient_id: str, caller: str,
                      signed_contract_file: str) -> Any:
        return self._call("recipientSignContract", {
            "txId": tx_id,
            "milestoneId": milestone_id,
            "recipientId": recipient_id,
            "caller": caller,
            "signedContractFile": signed_contract_file,
        })

    def approve_signed_contract(self, tx_id: str, milestone_id: str, recipient_id: str, caller: str) -> Any:
        return self._call("clientApprovedSignedContract", {
            "txId": tx_id,
            "milestoneId": milestone_id,
            "recipientId": recipient_id,
            "caller": caller,
        })

    def release_milestone_payment(self, tx_id: str, month_number: int, caller: str) -> Any:
        return self._call(
            "clientReleaseMilestonePayment",
            {"txId": tx_id, "monthNumber": month_number, "caller": caller},
        )

    def mark_as_read(self, actor: str, tx_id: str) -> Any:
        return self._call("markTransactionsAsRead", {"principal": actor, "txId": tx_id})

    def close(self) -> None:
        self.session.close()
