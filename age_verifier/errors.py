"""
Failure taxonomy for age resolution.

Every fetch failure is recovered inside the fetcher; these exceptions only
travel between the HTTP layer and the retry loop.
"""

from typing import Optional


class AgeVerifierError(Exception):
    """Base class for age verifier errors."""


class TransientFetchFailure(AgeVerifierError):
    """Network error, timeout or HTTP 5xx. Retried with backoff."""


class RateLimitExceeded(TransientFetchFailure):
    """HTTP 429 from the account-history API. Retried with a longer backoff."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentFetchFailure(AgeVerifierError):
    """Handle not found, bad token or unusable response. Never retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CacheCorruption(AgeVerifierError):
    """A persisted cache entry could not be deserialized."""
