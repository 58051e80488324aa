"""Tests for settings loading."""

import pytest

from crosschain_portfolio.config import load_settings
from crosschain_portfolio.core.consolidator import DedupKey
from crosschain_portfolio.errors import ConfigurationError


def test_missing_api_url():
    """Test startup fails without an API URL."""
    with pytest.raises(ConfigurationError, match="LIFI_API_URL"):
        load_settings(env={})


def test_defaults():
    """Test fetch defaults."""
    settings = load_settings(env={"LIFI_API_URL": "https://li.quest/v1/"})

    assert settings.api_url == "https://li.quest/v1"
    assert settings.api_key is None
    assert settings.fetch.batch_size == 10
    assert settings.fetch.fetch_delay == 0.5
    assert settings.fetch.max_retries == 3
    assert settings.fetch.dedup_key == DedupKey.SYMBOL


def test_env_values():
    """Test fetch tuning from environment variables."""
    settings = load_settings(
        env={
            "LIFI_API_URL": "https://li.quest/v1",
            "LIFI_API_KEY": "secret",
            "PORTFOLIO_BATCH_SIZE": "20",
            "PORTFOLIO_FETCH_DELAY": "0.25",
            "PORTFOLIO_MAX_RETRIES": "5",
        }
    )

    assert settings.api_key == "secret"
    assert settings.fetch.batch_size == 20
    assert settings.fetch.fetch_delay == 0.25
    assert settings.fetch.max_retries == 5


def test_overrides_win_and_none_ignored():
    """Test explicit overrides take precedence and None means unset."""
    settings = load_settings(
        env={"LIFI_API_URL": "https://li.quest/v1", "PORTFOLIO_BATCH_SIZE": "20"},
        batch_size=7,
        max_retries=None,
    )

    assert settings.fetch.batch_size == 7
    assert settings.fetch.max_retries == 3


def test_invalid_value():
    """Test invalid values raise a configuration error."""
    with pytest.raises(ConfigurationError, match="Invalid configuration"):
        load_settings(env={"LIFI_API_URL": "https://li.quest/v1", "PORTFOLIO_BATCH_SIZE": "0"})
