"""
Counterparty notifications.

Notifications are fire-and-forget: the orchestrator sends one per affected
counterparty after a mutation and only logs delivery failures.
"""
import logging
import urllib.parse
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

import requests
from pydantic import BaseModel, ConfigDict

from .exceptions import NotificationError

logger = logging.getLogger(__name__)


class NotificationAction(str, Enum):
    """What happened to the escrow"""
    RELEASED = "released"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    APPROVED = "approved"
    DECLINED = "declined"
    CONTRACT_SIGNED = "contract_signed"
    CONTRACT_APPROVED = "contract_approved"
    PAYMENT_RELEASED = "payment_released"


class NotificationEvent(BaseModel):
    """One notification addressed to one counterparty"""
    model_config = ConfigDict(frozen=True)

    action: NotificationAction
    tx_id: str
    recipient: str
    actor: str
    title: str = ""
    message: str = ""


class Notifier(ABC):
    """Delivers notification events to counterparties."""

    @abstractmethod
    def notify(self, event: NotificationEvent) -> None:
        """
        Deliver one event.

        Raises:
            NotificationError: If delivery failed
        """
        pass


class NullNotifier(Notifier):
    """Notifier that drops every event."""

    def notify(self, event: NotificationEvent) -> None:
        logger.debug(f"Dropping {event.action.value} notification for {event.recipient[:10]}")


class RecordingNotifier(Notifier):
    """Notifier that keeps every event in memory, for development."""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)


class HttpNotifier(Notifier):
    """
    Notifier posting events as JSON to a notification endpoint.

    Args:
        endpoint: URL that accepts ``POST`` of one event
        api_key: Optional bearer token
        timeout: Request timeout in seconds
        session: Pre-configured session (mainly for tests)
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ):
        parsed = urllib.parse.urlparse(endpoint)
        if parsed.scheme != "https" and parsed.hostname not in ("localhost", "127.0.0.1"):
            raise ValueError(f"endpoint must use https:// for security (got: {parsed.scheme}://)")
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def notify(self, event: NotificationEvent) -> None:
        try:
            response = self.session.post(
                self.endpoint,
                json=event.model_dump(mode="json"),
                headers=self.headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f"Failed to notify {event.recipient[:10]}: {e}") from e
