"""
Configuration management for the age verifier.

Handles loading configuration from environment variables and CLI arguments.
"""

import os
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
from dotenv import load_dotenv


DEFAULT_USER_AGENT = "python:com.github.reddit-age-verifier:v1.13.0 (Reddit Age Verifier)"


@dataclass
class Config:
    """Configuration for the age verifier."""

    # Account-history API
    api_base: str = "https://www.reddit.com"
    about_path: str = "/user/{handle}/about.json"
    search_url: str = "https://api.pushshift.io/reddit/search/submission/"
    api_token: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 30.0

    # Persistent cache (empty path keeps the cache in memory only)
    db_path: str = "age_verifier_cache.db"

    # Logging configuration
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Cache configuration
    cache_ttl_seconds: int = 7 * 24 * 60 * 60  # One week for user results
    max_cache_entries: int = 5000

    # Fetch configuration
    max_concurrent_fetches: int = 4
    retry_limit: int = 3  # Total attempts per lookup
    backoff_base_ms: int = 1000
    backoff_max_seconds: float = 60.0
    rate_limit_backoff_multiplier: float = 4.0  # 429s back off longer than 5xx

    # Rate limiting configuration
    rate_limit_per_minute: int = 60
    rate_limit_per_10s: int = 15  # Burst protection
    rate_limit_per_1s: int = 3  # Spike protection
    min_request_interval: float = 0.25  # Fixed delay between requests (seconds)

    # Quiet period before a scheduled rescan runs
    rescan_debounce_seconds: float = 0.5

    # Posted-age analysis (searches the user's submissions for self-reported ages)
    check_posted_ages: bool = False
    min_age: int = 10
    max_age: int = 70

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'Config':
        """
        Create configuration from environment variables.

        Args:
            env_file: Optional path to .env file

        Returns:
            Config instance

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        if env_file:
            env_path = Path(env_file)
            if env_path.exists():
                load_dotenv(env_path)
                logging.info(f"Loaded environment from {env_file}")
        else:
            default_env = Path.cwd() / ".env"
            if default_env.exists():
                load_dotenv(default_env)
                logging.info(f"Loaded environment from {default_env}")

        config = cls(
            api_base=os.getenv('AGE_VERIFIER_API_BASE', cls.api_base),
            search_url=os.getenv('AGE_VERIFIER_SEARCH_URL', cls.search_url),
            api_token=os.getenv('AGE_VERIFIER_API_TOKEN') or None,
            user_agent=os.getenv('USER_AGENT', DEFAULT_USER_AGENT),
            db_path=os.getenv('AGE_VERIFIER_DB_PATH', cls.db_path),
            log_dir=os.getenv('AGE_VERIFIER_LOG_DIR', cls.log_dir),
            log_level=os.getenv('LOG_LEVEL', cls.log_level),
        )

        int_settings = {
            'AGE_VERIFIER_CACHE_TTL': 'cache_ttl_seconds',
            'AGE_VERIFIER_MAX_CACHE_ENTRIES': 'max_cache_entries',
            'AGE_VERIFIER_MAX_CONCURRENT': 'max_concurrent_fetches',
            'AGE_VERIFIER_RETRY_LIMIT': 'retry_limit',
            'AGE_VERIFIER_BACKOFF_BASE_MS': 'backoff_base_ms',
        }
        for env_name, attr in int_settings.items():
            value = os.getenv(env_name)
            if value:
                try:
                    setattr(config, attr, int(value))
                except ValueError:
                    raise ValueError(f"{env_name} must be an integer, got {value!r}")

        return config

    def update_from_args(self, **kwargs):
        """
        Update configuration from CLI arguments.

        Args:
            **kwargs: Keyword arguments to update
        """
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
                logging.debug(f"Config updated: {key} = {value}")

    def validate(self):
        """
        Validate configuration.

        Raises:
            ValueError: If configuration is invalid
        """
        if '{handle}' not in self.about_path:
            raise ValueError("about_path must contain a {handle} placeholder")

        # Validate rate limits
        if self.rate_limit_per_minute < 1:
            raise ValueError("rate_limit_per_minute must be >= 1")

        if self.rate_limit_per_10s > self.rate_limit_per_minute:
            raise ValueError("rate_limit_per_10s cannot exceed rate_limit_per_minute")

        if self.rate_limit_per_1s > self.rate_limit_per_10s:
            raise ValueError("rate_limit_per_1s cannot exceed rate_limit_per_10s")

        if self.min_request_interval < 0:
            raise ValueError("min_request_interval must be >= 0")

        # Validate cache config
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be >= 0")

        if self.max_cache_entries < 1:
            raise ValueError("max_cache_entries must be >= 1")

        # Validate fetch config
        if self.max_concurrent_fetches < 1:
            raise ValueError("max_concurrent_fetches must be >= 1")

        if self.retry_limit < 1:
            raise ValueError("retry_limit must be >= 1")

        if self.backoff_base_ms < 0:
            raise ValueError("backoff_base_ms must be >= 0")

        if self.rescan_debounce_seconds < 0:
            raise ValueError("rescan_debounce_seconds must be >= 0")

        if self.min_age > self.max_age:
            raise ValueError("min_age cannot exceed max_age")

        # Validate paths
        if self.db_path:
            db_path = Path(self.db_path)
            if db_path.exists() and not db_path.is_file():
                raise ValueError(f"Database path exists but is not a file: {self.db_path}")

        log_dir = Path(self.log_dir)
        if log_dir.exists() and not log_dir.is_dir():
            raise ValueError(f"Log directory path exists but is not a directory: {self.log_dir}")

    def __str__(self) -> str:
        """String representation (without exposing the API token)."""
        return (
            f"Config(\n"
            f"  api_base={self.api_base}\n"
            f"  api_token={'set' if self.api_token else 'not set'}\n"
            f"  db_path={self.db_path or '(memory only)'}\n"
            f"  log_dir={self.log_dir}\n"
            f"  log_level={self.log_level}\n"
            f"  cache_ttl={self.cache_ttl_seconds}s, max_entries={self.max_cache_entries}\n"
            f"  max_concurrent_fetches={self.max_concurrent_fetches}\n"
            f"  retry_limit={self.retry_limit}, backoff_base={self.backoff_base_ms}ms\n"
            f"  rate_limit={self.rate_limit_per_minute}/min\n"
            f")"
        )
