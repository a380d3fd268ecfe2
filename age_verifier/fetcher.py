"""
Rate-limited fetcher for account ages.

Looks up each handle's account creation time through the account-history
API, honouring the concurrency cap, the rate limiter and retry/backoff.
"""

import math
import time
import httpx
import asyncio
import logging
from dataclasses import replace
from typing import Optional, Dict, Any, Callable

from age_verifier.config import Config
from age_verifier.errors import (
    TransientFetchFailure,
    PermanentFetchFailure,
    RateLimitExceeded,
)
from age_verifier.models import AgeRecord, FailureKind
from age_verifier.rate_limiter import SlidingWindowRateLimiter, ExponentialBackoff
from age_verifier.age_mentions import (
    build_age_search_query,
    collect_mentions,
    estimate_current_age,
)


class RateLimitedFetcher:
    """
    Resolves handles to AgeRecords.

    resolve() never raises: every failure ends in an unknown AgeRecord.
    """

    def __init__(
        self,
        config: Config,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize fetcher.

        Args:
            config: Configuration object
            rate_limiter: Rate limiter instance (built from config if omitted)
            transport: Optional httpx transport (used by tests)
            clock: Epoch time source used to compute ages
        """
        self.config = config
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter.from_config(config)
        self.transport = transport
        self.clock = clock

        # Concurrency cap; excess lookups queue here
        self.semaphore = asyncio.Semaphore(config.max_concurrent_fetches)

        # HTTP client
        self.client: Optional[httpx.AsyncClient] = None

        # Statistics
        self.total_requests = 0
        self.failed_requests = 0
        self.rate_limit_hits = 0
        self.lookups = 0
        self.unknown_results = 0

    async def initialize(self):
        """Create the HTTP client."""
        if self.client is not None:
            return

        headers = {"User-Agent": self.config.user_agent}
        if self.config.api_token:
            headers["Authorization"] = f"Bearer {self.config.api_token}"

        self.client = httpx.AsyncClient(
            timeout=self.config.request_timeout,
            headers=headers,
            transport=self.transport,
            follow_redirects=True,
        )
        logging.debug("Age fetcher initialized")

    def _about_url(self, handle: str) -> str:
        return self.config.api_base.rstrip('/') + self.config.about_path.format(handle=handle)

    async def _request_once(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Make a single GET under the concurrency cap and rate limiter.

        Raises:
            TransientFetchFailure: Network error, timeout or 5xx
            RateLimitExceeded: HTTP 429
            PermanentFetchFailure: 404, auth failure, other 4xx or unusable body
        """
        async with self.semaphore:
            await self.rate_limiter.acquire()
            try:
                response = await self.client.get(url, params=params)
            except httpx.HTTPError as e:
                raise TransientFetchFailure(f"Request failed for {url}: {e}") from e
            finally:
                self.total_requests += 1

        status = response.status_code

        if status == 429:
            self.rate_limit_hits += 1
            raise RateLimitExceeded(
                f"Rate limit hit (429) for {url}",
                retry_after=_parse_retry_after(response.headers.get('Retry-After')),
            )

        if status in (401, 403):
            raise PermanentFetchFailure(
                f"Token expired or invalid ({status}) for {url}", status_code=status
            )

        if status == 404:
            raise PermanentFetchFailure(f"Not found (404): {url}", status_code=status)

        if status >= 500:
            raise TransientFetchFailure(f"Server error ({status}) for {url}")

        if status >= 400:
            raise PermanentFetchFailure(f"HTTP error ({status}) for {url}", status_code=status)

        try:
            return response.json()
        except ValueError as e:
            raise PermanentFetchFailure(f"Failed to parse API response from {url}") from e

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a JSON document, retrying transient failures with backoff.

        Makes at most config.retry_limit attempts.

        Raises:
            TransientFetchFailure: When every attempt failed transiently
            PermanentFetchFailure: On the first permanent failure
        """
        if self.client is None:
            await self.initialize()

        backoff = ExponentialBackoff.from_config(self.config)
        max_attempts = self.config.retry_limit

        for attempt in range(1, max_attempts + 1):
            try:
                return await self._request_once(url, params)
            except PermanentFetchFailure:
                self.failed_requests += 1
                raise
            except TransientFetchFailure as e:
                self.failed_requests += 1
                if attempt >= max_attempts:
                    raise TransientFetchFailure(
                        f"Max retries exceeded ({max_attempts}) for {url}: {e}"
                    ) from e

                logging.warning(f"{e}, retrying (attempt {attempt}/{max_attempts})...")
                if isinstance(e, RateLimitExceeded):
                    await backoff.wait(rate_limited=True, retry_after=e.retry_after)
                else:
                    await backoff.wait()

        raise TransientFetchFailure(f"No attempts made for {url}")

    async def resolve(self, handle: str) -> AgeRecord:
        """
        Resolve a handle's account age.

        Args:
            handle: Normalized handle

        Returns:
            Live AgeRecord; unknown when the lookup failed
        """
        self.lookups += 1

        try:
            payload = await self._get_json(self._about_url(handle))
            created_utc = _parse_created_utc(payload)
        except PermanentFetchFailure as e:
            self.unknown_results += 1
            logging.info(f"u/{handle}: age unknown ({e})")
            return AgeRecord.unknown(handle, self.clock(), FailureKind.PERMANENT, str(e))
        except TransientFetchFailure as e:
            self.unknown_results += 1
            logging.error(f"u/{handle}: lookup failed ({e})")
            return AgeRecord.unknown(handle, self.clock(), FailureKind.TRANSIENT, str(e))
        except Exception as e:
            self.unknown_results += 1
            logging.error(f"u/{handle}: unexpected lookup error: {e}", exc_info=True)
            return AgeRecord.unknown(handle, self.clock(), FailureKind.TRANSIENT, str(e))

        record = AgeRecord.from_creation(handle, created_utc, self.clock())
        logging.debug(f"u/{handle}: account is {record.resolved_age_days} days old")

        if self.config.check_posted_ages:
            record = await self._attach_posted_ages(record)

        return record

    async def _attach_posted_ages(self, record: AgeRecord) -> AgeRecord:
        """Search the user's submissions for self-reported ages."""
        params = {
            'author': record.handle,
            'exact_author': 'true',
            'html_decode': 'True',
            'q': build_age_search_query(self.config.min_age, self.config.max_age),
            'size': 100,
            'sort': 'created_utc',
        }

        try:
            payload = await self._get_json(self.config.search_url, params)
        except (TransientFetchFailure, PermanentFetchFailure) as e:
            logging.warning(f"u/{record.handle}: posted-age search failed ({e})")
            return record

        posts = payload.get('data') if isinstance(payload, dict) else None
        if not isinstance(posts, list):
            logging.warning(f"u/{record.handle}: posted-age search returned no data list")
            return record

        logging.debug(f"Search returned {len(posts)} results for u/{record.handle}")
        mentions, points = collect_mentions(
            (post for post in posts if isinstance(post, dict)),
            self.config.min_age,
            self.config.max_age,
        )
        estimate = estimate_current_age(
            points,
            now=self.clock(),
            min_age=self.config.min_age,
            max_age=self.config.max_age,
        )
        return replace(
            record,
            posted_ages=mentions.posted,
            possible_ages=mentions.possible,
            age_estimate=estimate,
        )

    def get_stats(self) -> Dict[str, Any]:
        """
        Get fetcher statistics.

        Returns:
            Dictionary with statistics
        """
        return {
            'lookups': self.lookups,
            'unknown_results': self.unknown_results,
            'total_requests': self.total_requests,
            'failed_requests': self.failed_requests,
            'rate_limit_hits': self.rate_limit_hits,
            'success_rate': (
                (self.total_requests - self.failed_requests) / self.total_requests
                if self.total_requests > 0 else 0
            )
        }

    async def close(self):
        """Close the HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None
            logging.debug("Age fetcher closed")


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _parse_created_utc(payload: Any) -> float:
    """
    Read the account creation timestamp from an about.json style payload.

    Raises:
        PermanentFetchFailure: If the payload has no usable timestamp
    """
    if not isinstance(payload, dict):
        raise PermanentFetchFailure("Unexpected response shape")

    data = payload.get('data') if isinstance(payload.get('data'), dict) else payload

    if data.get('is_suspended'):
        raise PermanentFetchFailure("Account is suspended")

    created_utc = data.get('created_utc')
    if isinstance(created_utc, bool) or not isinstance(created_utc, (int, float)):
        raise PermanentFetchFailure("Response has no creation timestamp")

    if not math.isfinite(created_utc):
        raise PermanentFetchFailure(f"Invalid creation timestamp: {created_utc}")

    return float(created_utc)
