"""
Pytest fixtures for the SplitSafe SDK tests.
"""
import pytest

import splitsafe_sdk.retry
from splitsafe_sdk._rate_limited_log import reset_rate_limits
from splitsafe_sdk.client import EscrowClient
from splitsafe_sdk.config import SplitSafeConfig
from splitsafe_sdk.ledger import InMemoryLedgerTransport
from splitsafe_sdk.notifications import RecordingNotifier
from splitsafe_sdk.orchestrator import ActionOrchestrator
from splitsafe_sdk.store import TransactionStore

from test_helpers.records import NOW, basic_record, milestone_record


# Make re-fetch delays instantaneous so retries don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    async def _no_sleep(*_a, **_kw):
        return None

    monkeypatch.setattr(splitsafe_sdk.retry, "_sleep", _no_sleep)


@pytest.fixture(autouse=True)
def _fresh_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def clock():
    """Deterministic nanosecond clock."""
    return lambda: NOW


@pytest.fixture
def ledger(clock):
    """In-memory ledger holding one basic and one milestone escrow."""
    return InMemoryLedgerTransport([basic_record(), milestone_record()], clock=clock)


@pytest.fixture
def store():
    return TransactionStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def reported():
    """Collects (action, tx_id, error) error reports."""
    return []


@pytest.fixture
def config():
    return SplitSafeConfig(action_timeout=5.0)


@pytest.fixture
def orchestrator(ledger, store, notifier, config, reported, clock):
    return ActionOrchestrator(
        ledger,
        store,
        notifier=notifier,
        config=config,
        error_reporter=lambda action, tx_id, error: reported.append((action, tx_id, error)),
        clock=clock,
    )


@pytest.fixture
def client(ledger, store, notifier, config, reported, clock):
    return EscrowClient(
        ledger,
        store=store,
        notifier=notifier,
        config=config,
        error_reporter=lambda action, tx_id, error: reported.append((action, tx_id, error)),
        clock=clock,
    )
