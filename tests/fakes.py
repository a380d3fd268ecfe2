"""Fakes for the account-history API and the clock."""

import asyncio
from typing import Dict, List, Optional, Union

import httpx

from age_verifier.config import Config
from age_verifier.fetcher import RateLimitedFetcher


NOW = 1_700_000_000.0
DAY = 24 * 60 * 60


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeAccountAPI:
    """
    Serves about.json and submission search responses, recording every call.

    statuses maps a handle to a status code, or a list of codes served in turn
    before falling back to the normal response.
    """

    def __init__(
        self,
        created: Optional[Dict[str, float]] = None,
        statuses: Optional[Dict[str, Union[int, List[int]]]] = None,
        posts: Optional[Dict[str, list]] = None,
        delay: float = 0.0,
        gate: Optional[asyncio.Event] = None
    ):
        self.created = created or {}
        self.statuses = statuses or {}
        self.posts = posts or {}
        self.delay = delay
        self.gate = gate
        self.calls: List[str] = []
        self.requests: List[httpx.Request] = []
        self.active = 0
        self.max_active = 0

    def calls_for(self, handle: str) -> int:
        return sum(1 for call in self.calls if call == handle)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            return self._respond(request)
        finally:
            self.active -= 1

    def _respond(self, request: httpx.Request) -> httpx.Response:
        if 'search' in request.url.path:
            author = request.url.params.get('author')
            return httpx.Response(200, json={'data': self.posts.get(author, [])})

        handle = request.url.path.split('/')[2]
        self.calls.append(handle)

        status = self.statuses.get(handle)
        if isinstance(status, list):
            status = status.pop(0) if status else None
        if status is not None:
            return httpx.Response(status, json={'message': 'error', 'error': status})

        if handle not in self.created:
            return httpx.Response(404, json={'message': 'Not Found', 'error': 404})

        return httpx.Response(200, json={
            'kind': 't2',
            'data': {'name': handle, 'created_utc': self.created[handle]},
        })


def make_fetcher(config: Config, api: FakeAccountAPI, clock=None) -> RateLimitedFetcher:
    kwargs = {'transport': httpx.MockTransport(api)}
    if clock is not None:
        kwargs['clock'] = clock
    return RateLimitedFetcher(config, **kwargs)
