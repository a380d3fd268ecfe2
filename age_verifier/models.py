"""
Data model for age resolution: handles, age records and cache entries.
"""

import re
from dataclasses import dataclass, asdict, replace
from enum import Enum
from typing import Optional, Tuple, Dict, Any

from age_verifier.errors import CacheCorruption


# Reddit usernames: 3-20 characters of letters, digits, underscore and hyphen
HANDLE_PATTERN = re.compile(r'^[A-Za-z0-9_-]{3,20}$')

SECONDS_PER_DAY = 24 * 60 * 60


def normalize_handle(raw: str) -> str:
    """
    Normalize a user handle to its case-insensitive key form.

    Args:
        raw: Handle as found on the page, optionally prefixed with u/ or /u/

    Returns:
        Lower-cased handle

    Raises:
        ValueError: If the handle is not a valid Reddit username
    """
    if not isinstance(raw, str):
        raise ValueError(f"Handle must be a string, got {type(raw).__name__}")

    handle = raw.strip()
    for prefix in ('/u/', 'u/', '/user/', 'user/'):
        if handle.lower().startswith(prefix):
            handle = handle[len(prefix):]
            break

    if not HANDLE_PATTERN.match(handle):
        raise ValueError(f"Invalid handle: {raw!r}")

    return handle.lower()


class RecordSource(str, Enum):
    """Where an AgeRecord came from."""

    CACHE = 'cache'
    LIVE = 'live'


class FailureKind(str, Enum):
    """Why an AgeRecord is unknown."""

    PERMANENT = 'permanent'
    TRANSIENT = 'transient'


@dataclass(frozen=True)
class AgeEstimate:
    """Current-age estimate projected from self-reported ages."""

    estimated_age: Optional[float] = None
    confidence: Optional[str] = None
    data_points: int = 0
    year_span: float = 0.0
    anomalies_detected: bool = False
    couples_account: bool = False
    major_jump: bool = False
    skipped_reason: Optional[str] = None
    message: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


@dataclass(frozen=True)
class AgeRecord:
    """
    Resolved account age for a handle.

    resolved_age_days is None when the age is unknown.
    """

    handle: str
    resolved_age_days: Optional[int]
    resolved_at: float
    source: RecordSource = RecordSource.LIVE
    created_utc: Optional[float] = None
    failure: Optional[FailureKind] = None
    error: Optional[str] = None
    posted_ages: Tuple[int, ...] = ()
    possible_ages: Tuple[int, ...] = ()
    age_estimate: Optional[AgeEstimate] = None

    @classmethod
    def unknown(
        cls,
        handle: str,
        resolved_at: float,
        failure: FailureKind,
        error: Optional[str] = None
    ) -> 'AgeRecord':
        """Create a record for a handle whose age could not be resolved."""
        return cls(
            handle=handle,
            resolved_age_days=None,
            resolved_at=resolved_at,
            source=RecordSource.LIVE,
            failure=failure,
            error=error,
        )

    @classmethod
    def from_creation(cls, handle: str, created_utc: float, now: float) -> 'AgeRecord':
        """Create a live record from an account creation timestamp."""
        age_days = max(0, int((now - created_utc) // SECONDS_PER_DAY))
        return cls(
            handle=handle,
            resolved_age_days=age_days,
            resolved_at=now,
            source=RecordSource.LIVE,
            created_utc=created_utc,
        )

    @property
    def is_unknown(self) -> bool:
        return self.resolved_age_days is None

    @property
    def cacheable(self) -> bool:
        """Transient failures are not cached so the next request retries."""
        return self.failure != FailureKind.TRANSIENT

    def with_source(self, source: RecordSource) -> 'AgeRecord':
        return replace(self, source=source)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['source'] = self.source.value
        data['failure'] = self.failure.value if self.failure else None
        data['posted_ages'] = list(self.posted_ages)
        data['possible_ages'] = list(self.possible_ages)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AgeRecord':
        estimate = data.get('age_estimate')
        failure = data.get('failure')
        age_days = data['resolved_age_days']
        if age_days is not None and (not isinstance(age_days, int) or age_days < 0):
            raise ValueError(f"Invalid resolved_age_days: {age_days!r}")

        return cls(
            handle=normalize_handle(data['handle']),
            resolved_age_days=age_days,
            resolved_at=float(data['resolved_at']),
            source=RecordSource(data.get('source', RecordSource.LIVE.value)),
            created_utc=data.get('created_utc'),
            failure=FailureKind(failure) if failure else None,
            error=data.get('error'),
            posted_ages=tuple(int(age) for age in data.get('posted_ages') or ()),
            possible_ages=tuple(int(age) for age in data.get('possible_ages') or ()),
            age_estimate=AgeEstimate(**estimate) if estimate else None,
        )


@dataclass(frozen=True)
class CacheEntry:
    """An AgeRecord with its storage time and expiry."""

    record: AgeRecord
    stored_at: float
    expires_at: float

    @classmethod
    def create(cls, record: AgeRecord, now: float, ttl_seconds: float) -> 'CacheEntry':
        return cls(record=record, stored_at=now, expires_at=now + ttl_seconds)

    def is_expired(self, now: float) -> bool:
        """Expired once strictly more than the TTL has elapsed since storage."""
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'record': self.record.to_dict(),
            'stored_at': self.stored_at,
            'expires_at': self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheEntry':
        """
        Rebuild an entry from its persisted form.

        Raises:
            CacheCorruption: If the data is malformed
        """
        try:
            return cls(
                record=AgeRecord.from_dict(data['record']),
                stored_at=float(data['stored_at']),
                expires_at=float(data['expires_at']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CacheCorruption(f"Malformed cache entry: {e}") from e
