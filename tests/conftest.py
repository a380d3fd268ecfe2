"""Shared fixtures: fake clock, a fast memory-only config and a clean environment."""

import pytest

from age_verifier.config import Config
from tests.fakes import FakeClock


ENV_VARS = (
    'AGE_VERIFIER_API_BASE',
    'AGE_VERIFIER_SEARCH_URL',
    'AGE_VERIFIER_API_TOKEN',
    'AGE_VERIFIER_DB_PATH',
    'AGE_VERIFIER_LOG_DIR',
    'AGE_VERIFIER_CACHE_TTL',
    'AGE_VERIFIER_MAX_CACHE_ENTRIES',
    'AGE_VERIFIER_MAX_CONCURRENT',
    'AGE_VERIFIER_RETRY_LIMIT',
    'AGE_VERIFIER_BACKOFF_BASE_MS',
    'USER_AGENT',
    'LOG_LEVEL',
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    """Config with no persistence, no backoff delay and generous rate limits."""
    return Config(
        db_path='',
        backoff_base_ms=0,
        rate_limit_per_minute=10000,
        rate_limit_per_10s=10000,
        rate_limit_per_1s=10000,
        min_request_interval=0.0,
        rescan_debounce_seconds=0.0,
        max_concurrent_fetches=4,
        retry_limit=3,
    )


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """
    Run in an empty directory with none of the verifier's variables set.

    Variables loaded from .env files during the test are removed afterwards.
    """
    for name in ENV_VARS:
        monkeypatch.setenv(name, '')
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return monkeypatch
