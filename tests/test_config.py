"""
Tests for SDK configuration.
"""
import pytest
from pydantic import ValidationError

from splitsafe_sdk.config import SplitSafeConfig


def test_defaults():
    config = SplitSafeConfig()
    assert config.ledger_url is None
    assert config.retry_attempts == 3
    assert config.retry_delay_ms == 1000
    assert config.action_timeout == 30.0
    assert config.page_size == 100
    assert config.display_unit == 10 ** 8
    assert config.legacy_sender_prefixes == ()


def test_from_env():
    config = SplitSafeConfig.from_env({
        "SPLITSAFE_LEDGER_URL": "https://ledger.example.com",
        "SPLITSAFE_RETRY_ATTEMPTS": "5",
        "SPLITSAFE_ACTION_TIMEOUT": "2.5",
        "SPLITSAFE_LEGACY_SENDER_PREFIXES": "legacy-, old_ ,",
        "UNRELATED": "ignored",
    })
    assert config.ledger_url == "https://ledger.example.com"
    assert config.retry_attempts == 5
    assert config.action_timeout == 2.5
    assert config.legacy_sender_prefixes == ("legacy-", "old_")


def test_overrides_win_over_env():
    config = SplitSafeConfig.from_env({"SPLITSAFE_PAGE_SIZE": "10"}, page_size=20)
    assert config.page_size == 20


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("SPLITSAFE_API_KEY", "from-env")
    assert SplitSafeConfig.from_env().api_key == "from-env"


@pytest.mark.parametrize("values", [
    {"retry_attempts": 0},
    {"action_timeout": 0},
    {"page_size": -1},
    {"retry_delay_ms": "soon"},
])
def test_invalid_values(values):
    with pytest.raises(ValidationError):
        SplitSafeConfig(**values)


def test_frozen():
    config = SplitSafeConfig()
    with pytest.raises(ValidationError):
        config.page_size = 5
